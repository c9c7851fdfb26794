from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from app.coleta.audit import record_event
from app.coleta.constants import PARENT_KIND, ROTA
from app.coleta.modules.codes.assembler import assemble, scope_code_for
from app.coleta.modules.codes.errors import (
    AllocationConflictError,
    ParentNotFoundError,
    PrefixMismatchError,
    StaleSequenceError,
)
from app.coleta.modules.codes.sequence import peek_next, reserve_next
from app.coleta.modules.codes.validator import ensure_unique, normalize_code

if TYPE_CHECKING:
    from flask import Flask
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# Postgres SQLSTATEs worth retrying: serialization_failure, deadlock_detected.
_RETRYABLE_PGCODES = ("40001", "40P01")
_UNIQUE_VIOLATION = "23505"
# Unique indexes a concurrent allocation can trip over.
_RACE_CONSTRAINT_MARKERS = ("code_sequences", "code_key")


def _pgcode(exc: DBAPIError) -> str | None:
    return getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)


def _is_allocation_race(exc: IntegrityError) -> bool:
    """Unique violation on a counter or code key; any other constraint failure is a real error."""
    msg = str(exc.orig).lower()
    pgcode = _pgcode(exc)
    if pgcode is not None:
        if pgcode != _UNIQUE_VIOLATION:
            return False
    elif "unique" not in msg:
        return False
    return any(marker in msg for marker in _RACE_CONSTRAINT_MARKERS)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, StaleSequenceError):
        return True
    if isinstance(exc, IntegrityError):
        return _is_allocation_race(exc)
    if isinstance(exc, OperationalError) and "locked" in str(exc.orig).lower():
        return True
    if isinstance(exc, DBAPIError):
        return _pgcode(exc) in _RETRYABLE_PGCODES
    return False


class AllocationService:
    """
    Reserve-and-commit for coded children (Rota, Ponto, Operador).

    Every attempt runs in its own transaction: resolve parent, reserve the next
    sequence, assemble the code, check uniqueness, insert the row, commit. A lost
    race anywhere in that chain rolls the whole attempt back, so a reserved but
    uncommitted sequence is never visible outside it.
    """

    def __init__(
        self,
        session_factory: Callable[[], "Session"],
        *,
        max_retries: int = 5,
        retry_backoff: float = 0.01,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.session_factory = session_factory
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff

    def create_coded_entity(self, kind: str, parent_id: int, payload: dict, *, actor: str | None = None) -> Any:
        from app.coleta.modules.hierarchy.service import build_entity

        for attempt in range(1, self.max_retries + 1):
            s = self.session_factory()
            try:
                parent, scope_code = _resolve_parent(s, kind, parent_id)
                sequence = reserve_next(s, kind, scope_code)
                code = assemble(scope_code, sequence)
                _check_prefix(code, scope_code, parent.code)
                ensure_unique(s, kind, code)

                entity = build_entity(kind, parent, code, payload, actor=actor)
                s.add(entity)
                s.flush()
                record_event(
                    s,
                    actor=actor,
                    action=f"{kind}.create",
                    entity_type=type(entity).__name__,
                    entity_id=str(entity.id),
                    metadata={"code": code, "parent_id": parent.id, "sequence": sequence, "nome": entity.nome},
                )
                s.commit()
            except Exception as e:
                s.rollback()
                if not _is_transient(e):
                    raise
                logger.warning(
                    "Allocation conflict kind=%s parent_id=%s attempt=%d/%d: %s",
                    kind,
                    parent_id,
                    attempt,
                    self.max_retries,
                    e,
                )
                if attempt < self.max_retries and self.retry_backoff:
                    time.sleep(self.retry_backoff * attempt * (0.5 + random.random()))
                continue
            finally:
                s.close()

            logger.info("Issued %s code=%s parent_id=%s attempt=%d", kind, code, parent_id, attempt)
            return entity

        raise AllocationConflictError(
            f"Could not allocate a {kind} code under parent {parent_id} after {self.max_retries} attempts.",
            kind=kind,
            parent_id=parent_id,
        )

    def preview_code(self, kind: str, parent_id: int) -> str | None:
        """Code the next child would receive right now. Reserves nothing; may be stale by commit time."""
        s = self.session_factory()
        try:
            _parent, scope_code = _resolve_parent(s, kind, parent_id)
            nxt = peek_next(s, kind, scope_code)
            return assemble(scope_code, nxt) if nxt is not None else None
        finally:
            s.close()


def _resolve_parent(s: "Session", kind: str, parent_id: int) -> tuple[Any, str]:
    """Load the active parent for a `kind` child and return it with the child's scope prefix."""
    from app.coleta.modules.hierarchy.models import MODEL_FOR_KIND

    parent_kind = PARENT_KIND[kind]
    parent = s.get(MODEL_FOR_KIND[parent_kind], parent_id, populate_existing=True)
    if parent is None or not parent.active:
        raise ParentNotFoundError(
            f"{parent_kind.capitalize()} {parent_id} does not exist or is inactive.",
            kind=parent_kind,
            parent_id=parent_id,
        )
    if kind == ROTA:
        localidade = parent.localidade
        if localidade is None or not localidade.active:
            raise ParentNotFoundError(
                f"Localidade of secao {parent_id} does not exist or is inactive.",
                kind="localidade",
                parent_id=parent.localidade_id,
            )
        return parent, scope_code_for(kind, parent.code, localidade.code)
    return parent, scope_code_for(kind, parent.code)


def allocation_service_from_config(app: "Flask") -> AllocationService:
    svc = app.extensions.get("allocation_service")
    if svc is None:
        svc = AllocationService(
            app.extensions["sqlalchemy_sessionmaker"],
            max_retries=int(app.config.get("ALLOCATION_MAX_RETRIES", 5)),
            retry_backoff=float(app.config.get("ALLOCATION_RETRY_BACKOFF_MS", 10)) / 1000.0,
        )
        app.extensions["allocation_service"] = svc
    return svc


def _check_prefix(code: str, scope_code: str, parent_code: str) -> None:
    """Prefix containment: the child code carries the parent's full code."""
    key, scope_key = normalize_code(code), normalize_code(scope_code)
    if not key.startswith(scope_key) or not scope_key.endswith(normalize_code(parent_code)):
        raise PrefixMismatchError(
            f"Assembled code {code!r} does not carry parent code {parent_code!r}.",
            code=code,
            parent_code=parent_code,
        )
