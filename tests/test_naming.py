"""
Tests for slug rules, dataset file names and subject resolution.
"""

import pytest

from studyrepo.core.naming import derive_file_name, is_valid_slug, normalize_id, resolve_subject, sanitize_part
from studyrepo.core.schema import School, Subject


@pytest.fixture
def school():
    return School(id="demo", subjects=[
        Subject(id="econ", label="Economics", aliases=["Micro", "经济学"]),
        Subject(id="data-science", label="Data Science"),
    ])


class TestSanitizePart:
    """Test free-text to file-name fragment conversion."""

    @pytest.mark.parametrize("raw,expected", [
        ("Week 1", "week_1"),
        ("  Supply & Demand!! ", "supply_demand"),
        ("a__b", "a_b"),
        ("multi-part_name", "multi-part_name"),
        ("经济学 基础", "经济学_基础"),
        ("???", "untitled"),
        ("", "untitled"),
        (None, "untitled"),
    ])
    def test_sanitize(self, raw, expected):
        """Unsafe runs collapse to one underscore; empty results fall back."""
        assert sanitize_part(raw) == expected

    def test_derive_file_name_is_deterministic(self):
        """Same triple always gives the same name."""
        first = derive_file_name("flashcard", "Economics", "Week 1")
        assert first == "flashcard_economics_week_1.json"
        assert derive_file_name("flashcard", "Economics", "Week 1") == first

    def test_derive_file_name_with_blank_subject(self):
        assert derive_file_name("decoder", "", "Shift") == "decoder_untitled_shift.json"


class TestIds:
    """Test id normalization and slug validation."""

    def test_normalize_id(self):
        assert normalize_id("  Alice ") == "alice"
        assert normalize_id(None) == ""

    @pytest.mark.parametrize("value,valid", [
        ("alice", True),
        ("team-2_a", True),
        ("Alice", False),
        ("a b", False),
        ("../etc", False),
        ("", False),
    ])
    def test_is_valid_slug(self, value, valid):
        assert is_valid_slug(value) is valid


class TestResolveSubject:
    """Test subject lookup by id, label, alias and sanitized label."""

    def test_by_id(self, school):
        assert resolve_subject(school, "ECON").id == "econ"

    def test_by_label(self, school):
        assert resolve_subject(school, "economics").id == "econ"

    def test_by_alias(self, school):
        assert resolve_subject(school, "micro").id == "econ"
        assert resolve_subject(school, "经济学").id == "econ"

    def test_by_sanitized_label(self, school):
        """Labels match case-insensitively; a sanitized underscore form does not match a hyphenated id."""
        assert resolve_subject(school, "data science").id == "data-science"
        assert resolve_subject(school, "Data_Science") is None

    def test_unknown_and_blank(self, school):
        assert resolve_subject(school, "chemistry") is None
        assert resolve_subject(school, "") is None
        assert resolve_subject(school, None) is None
