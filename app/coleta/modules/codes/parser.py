from __future__ import annotations

from dataclasses import asdict, dataclass

from app.coleta.constants import OPERADOR, PONTO, ROTA, SECAO, SEGMENT_WIDTH
from app.coleta.modules.codes.assembler import assemble
from app.coleta.modules.codes.errors import MalformedCodeError

_W = SEGMENT_WIDTH


@dataclass(frozen=True)
class HierarchySegments:
    """
    A code split into its fixed-width segments.

    `sequence` is the last segment for Rota/Ponto/Operador codes and empty for a
    4-character Localidade+Secao scope prefix.
    """

    localidade: str
    secao: str
    rota: str | None
    ponto: str | None
    sequence: str
    length: int

    @property
    def kind(self) -> str:
        return {4: SECAO, 6: ROTA, 8: PONTO, 10: OPERADOR}[self.length]

    @property
    def parent_code(self) -> str:
        """Prefix the last segment was allocated under (the full code for a scope prefix)."""
        return "".join([self.localidade, self.secao, self.rota or "", self.ponto or ""])

    @property
    def sequence_number(self) -> int | None:
        return int(self.sequence) if self.sequence else None

    def as_dict(self) -> dict:
        out = asdict(self)
        out["kind"] = self.kind
        out["parent_code"] = self.parent_code
        out["sequence_number"] = self.sequence_number
        return out


def _seg(code: str, index: int) -> str:
    return code[index * _W:(index + 1) * _W]


def decompose(code: str) -> HierarchySegments:
    """
    Split a code by total length. Every level uses the same 2-character segment,
    so a 10-character Operador code reads LL SS RR PP NN.

    Length 4 is a Localidade+Secao prefix (the scope Rotas are allocated under),
    not an issued code; callers that need to tell the two apart must use context.
    """
    if not isinstance(code, str):
        raise MalformedCodeError(f"Code must be a string, got {type(code).__name__}.")
    n = len(code)
    if n not in (4, 6, 8, 10):
        raise MalformedCodeError(f"Unexpected code length {n} for {code!r}; expected 4, 6, 8 or 10.", code=code)

    sequence = "" if n == 4 else code[n - _W:]
    if sequence and (not (sequence.isascii() and sequence.isdigit()) or int(sequence) == 0):
        raise MalformedCodeError(f"Sequence segment {sequence!r} of {code!r} is not a number in 01-99.", code=code)

    return HierarchySegments(
        localidade=_seg(code, 0),
        secao=_seg(code, 1),
        rota=_seg(code, 2) if n >= 8 else None,
        ponto=_seg(code, 3) if n >= 10 else None,
        sequence=sequence,
        length=n,
    )


def reassemble(segments: HierarchySegments) -> str:
    """Inverse of `decompose`: rebuild the code from its own segments."""
    if segments.sequence_number is None:
        return segments.parent_code
    return assemble(segments.parent_code, segments.sequence_number)
