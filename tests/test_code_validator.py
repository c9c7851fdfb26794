"""Tests for duplicate-code validation (pure, no database)."""

from types import SimpleNamespace

from app.coleta.modules.codes.validator import CodeSet, find_duplicates, normalize_code, validate


class TestValidate:
    def test_case_insensitive_collision(self):
        outcome = validate("AB01", [{"code": "ab01"}])
        assert outcome.valid is False
        assert outcome.reason == "DuplicateCode"

    def test_unique_code_is_valid(self):
        outcome = validate("030103", [{"code": "030101"}, {"code": "030102"}])
        assert outcome.valid is True
        assert outcome.reason is None

    def test_scope_accepts_strings_and_objects(self):
        scope = ["030101", SimpleNamespace(code="030102"), {"code": None}, {"nome": "sem codigo"}]
        assert validate("030101", scope).valid is False
        assert validate("030102", scope).valid is False
        assert validate("030103", scope).valid is True

    def test_empty_scope(self):
        assert validate("030101", []).valid is True

    def test_whitespace_is_ignored(self):
        assert validate(" ab01 ", ["AB01"]).valid is False

    def test_prebuilt_code_set(self):
        taken = CodeSet(["0301", "0302"])
        assert len(taken) == 2
        assert validate("0301", taken).valid is False
        taken.add("0303")
        assert "0303" in taken

    def test_as_dict(self):
        assert validate("AB01", ["ab01"]).as_dict() == {"code": "AB01", "valid": False, "reason": "DuplicateCode"}
        assert validate("AB02", ["ab01"]).as_dict() == {"code": "AB02", "valid": True}


class TestFindDuplicates:
    def test_reports_each_duplicate_once(self):
        assert find_duplicates(["030101", "030102", "030101", "030101"]) == ["030101"]

    def test_case_insensitive(self):
        assert find_duplicates(["ab01", "AB01", "cd01"]) == ["AB01"]

    def test_blank_codes_ignored(self):
        assert find_duplicates(["", None, "", "0301"]) == []


def test_normalize_code():
    assert normalize_code(" ab01 ") == "AB01"
    assert normalize_code(None) == ""
