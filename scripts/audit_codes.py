#!/usr/bin/env python
"""
Code consistency report.

Lists duplicate codes, drifted code keys, malformed codes, prefix-containment
violations and sequence counters that lag behind the highest issued sequence.
Read-only unless --sync-counters is given, which only ever moves counters
forward. Issued codes are never renumbered.

Usage:
    python scripts/audit_codes.py
    python scripts/audit_codes.py --json
    python scripts/audit_codes.py --sync-counters

Exit status is 1 when findings remain, so it can gate a deploy or a cron alert.

Environment:
    DATABASE_URL (defaults to sqlite:///coleta.db)
"""
from __future__ import annotations

import argparse
import json
import sys

from _db_utils import resolve_database_url, script_session

from app.coleta.modules.codes.consistency import run_consistency_check, sync_counters


def print_report(report) -> None:
    print("=" * 60)
    print("CODE CONSISTENCY REPORT")
    print("=" * 60)
    for kind, n in report.scanned.items():
        print(f"  {kind:<10} {n:>6} row(s) scanned")
    if report.ok:
        print("\nNo findings.")
        return
    print(f"\n{len(report.findings)} finding(s):")
    for problem in ("duplicate", "key_drift", "malformed", "prefix_mismatch", "counter_behind"):
        items = report.by_problem(problem)
        if not items:
            continue
        print(f"\n[{problem}] {len(items)}")
        for f in items:
            ident = f" id={f.entity_id}" if f.entity_id is not None else ""
            print(f"  {f.kind:<10} {f.code:<12}{ident}  {f.detail or ''}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Audit issued codes for duplicates and inconsistencies.")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    parser.add_argument("--sync-counters", action="store_true", help="Move lagging counters up to the highest issued sequence")
    parser.add_argument("--database-url", default=None)
    args = parser.parse_args()

    with script_session(resolve_database_url(args.database_url)) as s:
        if args.sync_counters:
            for kind, scope, before, after in sync_counters(s):
                print(f"counter {kind}/{scope}: {before} -> {after}")
            s.flush()
        report = run_consistency_check(s)

    if args.json:
        print(json.dumps(report.as_dict(), indent=2))
    else:
        print_report(report)
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
