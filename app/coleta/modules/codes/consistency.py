"""
Read-only consistency audit of issued codes.

Finds the problems the allocator is meant to make impossible, for data that
pre-dates it or was imported around it:
- duplicate code keys within a kind
- stored code keys that drifted from their code
- codes whose length or shape does not match their level
- child codes that do not carry their parent's code as a prefix
- sequence counters lagging behind the highest sequence already issued

Nothing is renumbered: issued codes are immutable. `sync_counters` is the only
write, and it only ever moves a counter forward.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select

from app.coleta.constants import CODE_LENGTH, LOCALIDADE, OPERADOR, PONTO, ROTA, SECAO
from app.coleta.modules.codes.errors import MalformedCodeError
from app.coleta.modules.codes.models import CodeSequence
from app.coleta.modules.codes.parser import decompose
from app.coleta.modules.codes.sequence import highest_issued_sequence, sync_counter
from app.coleta.modules.codes.validator import find_duplicates, normalize_code
from app.coleta.modules.hierarchy.models import MODEL_FOR_KIND, Operador, Ponto, Rota, Secao

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@dataclass
class Finding:
    kind: str
    problem: str  # duplicate | key_drift | malformed | prefix_mismatch | counter_behind
    code: str
    entity_id: int | None = None
    detail: str | None = None

    def as_dict(self) -> dict:
        return {
            "kind": self.kind,
            "problem": self.problem,
            "code": self.code,
            "entity_id": self.entity_id,
            "detail": self.detail,
        }


@dataclass
class ConsistencyReport:
    started_at: datetime
    finished_at: datetime | None = None
    scanned: dict[str, int] = field(default_factory=dict)
    findings: list[Finding] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.findings

    def by_problem(self, problem: str) -> list[Finding]:
        return [f for f in self.findings if f.problem == problem]

    def as_dict(self) -> dict:
        return {
            "ok": self.ok,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "scanned": dict(self.scanned),
            "findings": [f.as_dict() for f in self.findings],
        }


def _check_shape(kind: str, code: str) -> str | None:
    if len(code) != CODE_LENGTH[kind]:
        return f"expected {CODE_LENGTH[kind]} characters, got {len(code)}"
    if kind in (LOCALIDADE, SECAO):
        return None if code.isalnum() else "not alphanumeric"
    try:
        decompose(code)
    except MalformedCodeError as e:
        return e.message
    return None


def _expected_prefix(kind: str, entity) -> str | None:
    """Full code the entity's parent scope contributes, or None if the parent is gone."""
    if kind == ROTA:
        secao = entity.secao
        if secao is None or secao.localidade is None:
            return None
        return f"{secao.localidade.code}{secao.code}"
    if kind == PONTO:
        return entity.rota.code if entity.rota is not None else None
    if kind == OPERADOR:
        return entity.ponto.code if entity.ponto is not None else None
    return None


def run_consistency_check(s: "Session") -> ConsistencyReport:
    """Scan every level (inactive rows included) and collect findings."""
    report = ConsistencyReport(started_at=datetime.utcnow())

    for kind in (LOCALIDADE, SECAO, ROTA, PONTO, OPERADOR):
        model = MODEL_FOR_KIND[kind]
        rows = list(s.execute(select(model).order_by(model.id.asc())).scalars().all())
        report.scanned[kind] = len(rows)

        ids_by_key: dict[str, list[int]] = {}
        for row in rows:
            ids_by_key.setdefault(normalize_code(row.code), []).append(row.id)
            # code_key drifting from code would defeat the unique index.
            if row.code_key != normalize_code(row.code):
                report.findings.append(
                    Finding(kind, "key_drift", row.code, row.id, f"code_key {row.code_key!r} does not match code")
                )

        for key in find_duplicates(r.code for r in rows):
            report.findings.append(
                Finding(kind, "duplicate", key, None, f"shared by ids {ids_by_key.get(key, [])}")
            )

        for row in rows:
            problem = _check_shape(kind, row.code)
            if problem:
                report.findings.append(Finding(kind, "malformed", row.code, row.id, problem))
                continue
            prefix = _expected_prefix(kind, row)
            if kind in (ROTA, PONTO, OPERADOR):
                if prefix is None:
                    report.findings.append(Finding(kind, "prefix_mismatch", row.code, row.id, "parent missing"))
                elif not normalize_code(row.code).startswith(normalize_code(prefix)):
                    report.findings.append(
                        Finding(kind, "prefix_mismatch", row.code, row.id, f"expected prefix {prefix!r}")
                    )

    for counter in s.execute(select(CodeSequence)).scalars().all():
        issued = highest_issued_sequence(s, counter.entity_kind, counter.scope_key)
        if issued > counter.last_value:
            report.findings.append(
                Finding(
                    counter.entity_kind,
                    "counter_behind",
                    counter.scope_key,
                    counter.id,
                    f"counter at {counter.last_value}, highest issued {issued}",
                )
            )

    report.finished_at = datetime.utcnow()
    logger.info(
        "Code consistency check: scanned=%s findings=%d",
        report.scanned,
        len(report.findings),
    )
    return report


def sync_counters(s: "Session") -> list[tuple[str, str, int, int]]:
    """
    Bring every scope's counter up to its highest issued sequence.
    Returns (kind, scope, before, after) for counters that moved. Caller commits.
    """
    scopes: set[tuple[str, str]] = set()
    for secao in s.execute(select(Secao)).scalars().all():
        if secao.localidade is not None:
            scopes.add((ROTA, normalize_code(f"{secao.localidade.code}{secao.code}")))
    for rota in s.execute(select(Rota)).scalars().all():
        scopes.add((PONTO, rota.code_key))
    for ponto in s.execute(select(Ponto)).scalars().all():
        scopes.add((OPERADOR, ponto.code_key))

    moved = []
    for kind, scope in sorted(scopes):
        before, after = sync_counter(s, kind, scope)
        if after != before:
            logger.warning("Counter %s/%s moved %d -> %d", kind, scope, before, after)
            moved.append((kind, scope, before, after))
    return moved
