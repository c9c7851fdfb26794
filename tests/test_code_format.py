"""
Unit tests for code assembly and decomposition.

Tests cover:
- Zero-padded assembly per level
- Sequence bounds (1-99)
- Decomposition by length with uniform 2-char segments
- Round trip assemble -> decompose -> reassemble
"""

import pytest

from app.coleta.modules.codes.assembler import allocate, assemble, child_kind_for, scope_code_for
from app.coleta.modules.codes.errors import MalformedCodeError, SequenceOutOfRangeError
from app.coleta.modules.codes.parser import decompose, reassemble


class TestAssemble:
    """Tests for assemble()"""

    def test_levels(self):
        assert assemble("0301", 1) == "030101"
        assert assemble("030101", 1) == "03010101"
        assert assemble("03010101", 1) == "0301010101"

    def test_zero_padding(self):
        assert assemble("0301", 2) == "030102"
        assert assemble("0301", 10) == "030110"
        assert assemble("0301", 99) == "030199"

    def test_deterministic(self):
        assert assemble("AB01", 7) == assemble("AB01", 7)

    @pytest.mark.parametrize("seq", [0, 100, -1, 1000])
    def test_out_of_range(self, seq):
        with pytest.raises(SequenceOutOfRangeError):
            assemble("0301", seq)

    @pytest.mark.parametrize("seq", ["1", 1.0, None, True])
    def test_non_integer_sequence(self, seq):
        with pytest.raises(SequenceOutOfRangeError):
            assemble("0301", seq)

    def test_allocate_preview_matches_assemble(self):
        assert allocate("0301", 1) == "030101"
        assert allocate("03010101", 3) == "0301010103"

    def test_allocate_rejects_unknown_parent_length(self):
        with pytest.raises(MalformedCodeError):
            allocate("0301010101", 1)  # operadores have no children

    def test_child_kind_for(self):
        assert child_kind_for("0301") == "rota"
        assert child_kind_for("030101") == "ponto"
        assert child_kind_for("03010101") == "operador"

    def test_scope_for_rota_includes_localidade(self):
        assert scope_code_for("rota", "01", "03") == "0301"
        assert scope_code_for("ponto", "030101") == "030101"
        with pytest.raises(ValueError):
            scope_code_for("rota", "01")
        with pytest.raises(ValueError):
            scope_code_for("secao", "03")


class TestDecompose:
    """Tests for decompose()"""

    def test_scope_prefix(self):
        seg = decompose("0301")
        assert (seg.localidade, seg.secao, seg.rota, seg.ponto, seg.sequence) == ("03", "01", None, None, "")
        assert seg.length == 4
        assert seg.sequence_number is None

    def test_rota(self):
        seg = decompose("030102")
        assert (seg.localidade, seg.secao, seg.sequence) == ("03", "01", "02")
        assert seg.kind == "rota"
        assert seg.parent_code == "0301"

    def test_ponto(self):
        seg = decompose("03010207")
        assert (seg.localidade, seg.secao, seg.rota, seg.sequence) == ("03", "01", "02", "07")
        assert seg.kind == "ponto"
        assert seg.parent_code == "030102"

    def test_operador_uses_two_char_rota_segment(self):
        seg = decompose("0301020704")
        assert seg.rota == "02"
        assert seg.ponto == "07"
        assert seg.sequence == "04"
        assert seg.sequence_number == 4
        assert seg.parent_code == "03010207"

    @pytest.mark.parametrize("code", ["", "0", "03", "030", "03010", "0301010", "030101010", "03010101011"])
    def test_unexpected_length(self, code):
        with pytest.raises(MalformedCodeError):
            decompose(code)

    @pytest.mark.parametrize("code", ["0301AB", "030100", "030101-1"])
    def test_bad_sequence_segment(self, code):
        with pytest.raises(MalformedCodeError):
            decompose(code)

    def test_alphanumeric_prefix_allowed(self):
        seg = decompose("AB0105")
        assert seg.localidade == "AB"
        assert seg.sequence_number == 5

    def test_as_dict(self):
        d = decompose("03010101").as_dict()
        assert d["kind"] == "ponto"
        assert d["parent_code"] == "030101"
        assert d["sequence_number"] == 1


class TestRoundTrip:
    """assemble -> decompose -> reassemble reproduces the code"""

    @pytest.mark.parametrize("parent", ["0301", "AB99", "030101", "03019901", "zz01"])
    @pytest.mark.parametrize("seq", [1, 2, 9, 10, 50, 99])
    def test_round_trip(self, parent, seq):
        code = assemble(parent, seq)
        assert reassemble(decompose(code)) == code

    def test_round_trip_full_chain(self):
        rota = assemble("0301", 3)
        ponto = assemble(rota, 12)
        operador = assemble(ponto, 99)
        for code in (rota, ponto, operador):
            assert reassemble(decompose(code)) == code
        assert operador.startswith(ponto) and ponto.startswith(rota)

    def test_scope_prefix_round_trip(self):
        assert reassemble(decompose("0301")) == "0301"
