"""
Per-parent-scope sequence counters.

Reservation is an in-place increment of the `code_sequences` row:

    UPDATE code_sequences SET last_value = last_value + 1
    WHERE entity_kind = :kind AND scope_key = :scope AND last_value < 99

executed inside the caller's transaction, followed by reading `last_value` back.
Concurrent reservations on one scope queue on the row (Postgres) or the write
lock (SQLite) instead of failing. The counter row for a scope is created on
first use with an insert that ignores a concurrent insert of the same row.
Nothing is consumed unless the surrounding transaction commits.
"""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError

from app.coleta.constants import SCOPE_LENGTH, SEGMENT_WIDTH, SEQUENCE_MAX
from app.coleta.modules.codes.errors import SequenceExhaustedError, StaleSequenceError
from app.coleta.modules.codes.models import CodeSequence
from app.coleta.modules.codes.validator import normalize_code

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def highest_issued_sequence(s: "Session", kind: str, scope_code: str) -> int:
    """
    Largest sequence already present among children of `scope_code`, active or not.

    Used to seed a counter the first time a scope is allocated from, so codes that
    pre-date the counter (imported or legacy rows) are never handed out again.
    """
    from app.coleta.modules.hierarchy.models import MODEL_FOR_KIND

    model = MODEL_FOR_KIND[kind]
    scope_key = normalize_code(scope_code)
    expected_len = len(scope_key) + SEGMENT_WIDTH
    rows = s.execute(select(model.code_key).where(model.code_key.like(f"{scope_key}%"))).scalars().all()
    best = 0
    for key in rows:
        if len(key) != expected_len:
            continue
        tail = key[len(scope_key):]
        if tail.isdigit():
            best = max(best, int(tail))
    return best


def _load_counter(s: "Session", kind: str, scope_key: str) -> CodeSequence | None:
    return s.execute(
        select(CodeSequence)
        .where(CodeSequence.entity_kind == kind)
        .where(CodeSequence.scope_key == scope_key)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def ensure_counter(s: "Session", kind: str, scope_code: str) -> None:
    """
    Create the counter row for (kind, scope) if it is missing, seeded from the
    highest sequence already issued there. A row inserted concurrently by
    another session wins; ours is dropped.
    """
    scope_key = normalize_code(scope_code)
    if _load_counter(s, kind, scope_key) is not None:
        return
    now = datetime.utcnow()
    values = {
        "entity_kind": kind,
        "scope_key": scope_key,
        "last_value": min(highest_issued_sequence(s, kind, scope_key), SEQUENCE_MAX),
        "created_at": now,
        "updated_at": now,
    }
    dialect = s.get_bind().dialect.name
    if dialect == "sqlite":
        stmt = sqlite_insert(CodeSequence).values(**values).on_conflict_do_nothing(
            index_elements=["entity_kind", "scope_key"]
        )
    elif dialect == "postgresql":
        stmt = pg_insert(CodeSequence).values(**values).on_conflict_do_nothing(
            constraint="uq_code_sequences_kind_scope"
        )
    else:
        try:
            with s.begin_nested():
                s.add(CodeSequence(**values))
        except IntegrityError:
            pass  # created by a concurrent session
        return
    s.execute(stmt)


def reserve_next(s: "Session", kind: str, scope_code: str) -> int:
    """
    Atomically take the next sequence number for (kind, scope).

    Blocks while another transaction holds the counter; the number is only
    consumed if the caller's transaction commits.

    Raises:
    - SequenceExhaustedError when the scope already issued SEQUENCE_MAX children.
    - StaleSequenceError if the counter row vanished under us (transient).
    """
    if len(scope_code) != SCOPE_LENGTH[kind]:
        raise ValueError(f"Scope {scope_code!r} has the wrong length for a {kind} parent.")
    scope_key = normalize_code(scope_code)
    ensure_counter(s, kind, scope_key)

    result = s.execute(
        update(CodeSequence)
        .where(CodeSequence.entity_kind == kind)
        .where(CodeSequence.scope_key == scope_key)
        .where(CodeSequence.last_value < SEQUENCE_MAX)
        .values(last_value=CodeSequence.last_value + 1, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    value = s.execute(
        select(CodeSequence.last_value)
        .where(CodeSequence.entity_kind == kind)
        .where(CodeSequence.scope_key == scope_key)
    ).scalar_one_or_none()
    if value is None:
        raise StaleSequenceError(f"Counter for {kind} scope {scope_code!r} disappeared.")
    if result.rowcount != 1:
        raise SequenceExhaustedError(
            f"Scope {scope_code!r} has already issued {SEQUENCE_MAX} {kind} codes.",
            kind=kind,
            scope=scope_code,
        )
    return value


def peek_next(s: "Session", kind: str, scope_code: str) -> int | None:
    """Next number `reserve_next` would hand out, or None if the scope is full. Reserves nothing."""
    scope_key = normalize_code(scope_code)
    counter = _load_counter(s, kind, scope_key)
    seen = counter.last_value if counter is not None else highest_issued_sequence(s, kind, scope_key)
    if seen >= SEQUENCE_MAX:
        return None
    return seen + 1


def sync_counter(s: "Session", kind: str, scope_code: str) -> tuple[int, int]:
    """
    Move a lagging counter up to the highest issued sequence. Never moves it down.
    Returns (before, after).
    """
    scope_key = normalize_code(scope_code)
    issued = highest_issued_sequence(s, kind, scope_key)
    counter = _load_counter(s, kind, scope_key)
    now = datetime.utcnow()
    if counter is None:
        if issued:
            s.add(CodeSequence(entity_kind=kind, scope_key=scope_key, last_value=issued, created_at=now, updated_at=now))
        return (0, issued)
    before = counter.last_value
    if issued > before:
        counter.last_value = issued
        counter.updated_at = now
    return (before, counter.last_value)
