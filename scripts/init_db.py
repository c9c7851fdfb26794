#!/usr/bin/env python
"""
Create tables (dev/test only) and seed localidades/secoes.

Localidade and Secao codes are typed in by operators, so they are the only
codes a seed may set; everything below them is allocated at runtime.

Seed file (JSON):
    {
      "localidades": [{"code": "03", "nome": "Centro"}],
      "secoes": [{"localidade": "03", "code": "01", "nome": "Norte"}]
    }

Usage:
    python scripts/init_db.py --create-tables
    python scripts/init_db.py --seed seed.json

Environment:
    DATABASE_URL (defaults to sqlite:///coleta.db)
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from _db_utils import create_script_engine, resolve_database_url, script_session

from app.coleta.models import Base
from app.coleta.modules.hierarchy.service import (
    create_localidade,
    create_secao,
    get_by_code,
    validate_entity_payload,
)


def create_tables(database_url: str | None = None) -> None:
    """Create every table straight from the models. Production uses `alembic upgrade head`."""
    engine = create_script_engine(resolve_database_url(database_url))
    try:
        Base.metadata.create_all(bind=engine)
    finally:
        engine.dispose()
    print("Tables created.")


def seed_only(seed: dict, *, database_url: str | None = None, actor: str = "init_db") -> tuple[int, int]:
    """
    Insert localidades/secoes from `seed`, skipping codes that already exist.
    Returns (localidades_created, secoes_created).
    """
    created_loc = created_sec = 0
    with script_session(resolve_database_url(database_url)) as s:
        for item in seed.get("localidades") or []:
            if get_by_code(s, "localidade", item.get("code") or ""):
                continue
            errors = validate_entity_payload("localidade", item)
            if errors:
                raise ValueError(f"Invalid localidade {item!r}: {'; '.join(errors)}")
            create_localidade(s, item, actor=actor)
            created_loc += 1

        for item in seed.get("secoes") or []:
            if get_by_code(s, "secao", item.get("code") or ""):
                continue
            loc = get_by_code(s, "localidade", item.get("localidade") or "")
            if loc is None:
                raise ValueError(f"Secao {item.get('code')!r} references unknown localidade {item.get('localidade')!r}")
            payload = {"code": item.get("code"), "nome": item.get("nome"), "localidade_id": loc.id}
            errors = validate_entity_payload("secao", payload)
            if errors:
                raise ValueError(f"Invalid secao {item!r}: {'; '.join(errors)}")
            create_secao(s, payload, actor=actor)
            created_sec += 1

    print(f"Seeded {created_loc} localidade(s), {created_sec} secao(es).")
    return created_loc, created_sec


def main() -> None:
    parser = argparse.ArgumentParser(description="Create tables and seed localidades/secoes.")
    parser.add_argument("--create-tables", action="store_true", help="Create tables from models (dev only)")
    parser.add_argument("--seed", type=Path, help="JSON seed file")
    parser.add_argument("--database-url", default=None)
    args = parser.parse_args()

    if not args.create_tables and not args.seed:
        parser.print_help()
        sys.exit(2)
    if args.create_tables:
        create_tables(args.database_url)
    if args.seed:
        seed = json.loads(args.seed.read_text(encoding="utf-8"))
        seed_only(seed, database_url=args.database_url)


if __name__ == "__main__":
    main()
