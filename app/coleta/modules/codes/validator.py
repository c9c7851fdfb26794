from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from app.coleta.modules.codes.errors import DuplicateCodeError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


DUPLICATE_CODE = "DuplicateCode"


def normalize_code(code: Any) -> str:
    """Canonical key for case-insensitive comparisons ("ab01 " -> "AB01")."""
    return ("" if code is None else str(code)).strip().upper()


def _code_of(item: Any) -> str | None:
    if item is None:
        return None
    if isinstance(item, str):
        return item
    if isinstance(item, Mapping):
        return item.get("code")
    return getattr(item, "code", None)


class CodeSet:
    """
    Normalized key set of issued codes.

    Accepts plain strings, mappings with a "code" key, or objects with a `.code`
    attribute. Entries without a code are ignored.
    """

    def __init__(self, items: Iterable[Any] = ()) -> None:
        self._keys: set[str] = set()
        for item in items:
            self.add(_code_of(item))

    def add(self, code: str | None) -> None:
        key = normalize_code(code)
        if key:
            self._keys.add(key)

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and normalize_code(code) in self._keys

    def __len__(self) -> int:
        return len(self._keys)


@dataclass(frozen=True)
class ValidationOutcome:
    code: str
    valid: bool
    reason: str | None = None

    def as_dict(self) -> dict:
        out: dict = {"code": self.code, "valid": self.valid}
        if self.reason:
            out["reason"] = self.reason
        return out


def validate(code: str, collision_scope: Iterable[Any] | CodeSet) -> ValidationOutcome:
    """
    Check `code` against every code already issued in its collision scope
    (all codes of the same kind, inactive ones included).
    """
    scope = collision_scope if isinstance(collision_scope, CodeSet) else CodeSet(collision_scope)
    if code in scope:
        return ValidationOutcome(code=code, valid=False, reason=DUPLICATE_CODE)
    return ValidationOutcome(code=code, valid=True)


def validate_in_store(s: "Session", kind: str, code: str) -> ValidationOutcome:
    """Validate against the store: the collision scope is every row of `kind`."""
    from app.coleta.modules.hierarchy.models import MODEL_FOR_KIND

    model = MODEL_FOR_KIND[kind]
    taken = s.execute(select(model.id).where(model.code_key == normalize_code(code)).limit(1)).first()
    if taken is not None:
        return ValidationOutcome(code=code, valid=False, reason=DUPLICATE_CODE)
    return ValidationOutcome(code=code, valid=True)


def ensure_unique(s: "Session", kind: str, code: str) -> None:
    """Raising form of `validate_in_store`, run inside the write transaction."""
    outcome = validate_in_store(s, kind, code)
    if not outcome.valid:
        raise DuplicateCodeError(f"Code {code!r} is already taken by another {kind}.", code=code, kind=kind)


def find_duplicates(codes: Iterable[str | None]) -> list[str]:
    """Normalized keys that appear more than once, in first-seen order."""
    seen: set[str] = set()
    dupes: list[str] = []
    for code in codes:
        key = normalize_code(code)
        if not key:
            continue
        if key in seen:
            if key not in dupes:
                dupes.append(key)
        else:
            seen.add(key)
    return dupes
