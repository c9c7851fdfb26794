from __future__ import annotations

from app.coleta.constants import ALLOCATED_KINDS, ROTA, SCOPE_LENGTH, SEGMENT_WIDTH, SEQUENCE_MAX, SEQUENCE_MIN
from app.coleta.modules.codes.errors import MalformedCodeError, SequenceOutOfRangeError


def format_sequence(sequence: int) -> str:
    """Zero-pad a sequence number to the segment width ("1" -> "01")."""
    # bool is an int subclass; True would silently become "01".
    if isinstance(sequence, bool) or not isinstance(sequence, int):
        raise SequenceOutOfRangeError(f"Sequence must be an integer, got {sequence!r}.", sequence=repr(sequence))
    if sequence < SEQUENCE_MIN or sequence > SEQUENCE_MAX:
        raise SequenceOutOfRangeError(
            f"Sequence {sequence} is outside [{SEQUENCE_MIN}, {SEQUENCE_MAX}].",
            sequence=sequence,
        )
    return str(sequence).zfill(SEGMENT_WIDTH)


def assemble(parent_code: str, sequence: int) -> str:
    """
    Build a child code from its parent's full code and a sequence number.

    Examples:
    - assemble("0301", 1)     -> "030101"      (Rota)
    - assemble("030101", 1)   -> "03010101"    (Ponto)
    - assemble("03010101", 1) -> "0301010101"  (Operador)
    """
    return f"{parent_code}{format_sequence(sequence)}"


def allocate(parent_code: str, sequence: int) -> str:
    """
    Display/preview form of `assemble`: the code a child would get once `sequence`
    is reserved. Never reserves anything by itself.
    """
    child_kind_for(parent_code)
    return assemble(parent_code, sequence)


def child_kind_for(parent_code: str) -> str:
    """Which entity kind is allocated under a parent scope of this length."""
    n = len(parent_code or "")
    for kind, scope_len in SCOPE_LENGTH.items():
        if scope_len == n:
            return kind
    raise MalformedCodeError(
        f"No child level allocates under a {n}-character code {parent_code!r}.",
        code=parent_code,
    )


def scope_code_for(kind: str, parent_code: str, localidade_code: str | None = None) -> str:
    """
    Resolve the prefix a child of `kind` is allocated under.

    Rotas are allocated under LocalidadeCode + SecaoCode; every other level uses the
    parent's full code as-is.
    """
    if kind not in ALLOCATED_KINDS:
        raise ValueError(f"Unsupported kind for allocation: {kind!r}")
    if kind == ROTA:
        if localidade_code is None:
            raise ValueError("Rota allocation requires the localidade code.")
        return f"{localidade_code}{parent_code}"
    return parent_code
