"""
Test cases for tag validation, sanitization and normalization.
"""
import pytest

from tradetags.core.tag_normalizer import (
    coerce_tag_list,
    normalize_tag,
    process_tags,
    record_tags,
    sanitize_tag,
    strip_marker,
    validate_tag,
    validate_tags,
)


class TestValidateTag:
    """Single-tag validation."""

    def test_valid_tags(self):
        assert validate_tag("#scalp").is_valid
        assert validate_tag("scalp").is_valid
        assert validate_tag("#Break_Out_2").is_valid

    def test_empty_tag(self):
        assert validate_tag("").codes == ["TAG_EMPTY"]
        assert validate_tag("   ").codes == ["TAG_EMPTY"]
        assert validate_tag("#").codes == ["TAG_EMPTY"]
        assert validate_tag(None).codes == ["TAG_EMPTY"]

    def test_too_long(self):
        assert validate_tag("#" + "a" * 50).is_valid
        assert validate_tag("#" + "a" * 51).codes == ["TAG_TOO_LONG"]

    def test_invalid_characters(self):
        assert validate_tag("#bad tag").codes == ["TAG_INVALID_CHARS"]
        assert validate_tag("#news-play").codes == ["TAG_INVALID_CHARS"]

    def test_reports_every_error(self):
        result = validate_tag("#" + "a-" * 30)
        assert set(result.codes) == {"TAG_TOO_LONG", "TAG_INVALID_CHARS"}


class TestValidateTags:
    """Collection validation."""

    def test_not_a_list(self):
        assert validate_tags("#a,#b").codes == ["TAGS_NOT_LIST"]
        assert validate_tags(None).codes == ["TAGS_NOT_LIST"]

    def test_too_many_tags(self):
        tags = [f"#t{i}" for i in range(21)]
        assert "TOO_MANY_TAGS" in validate_tags(tags).codes
        assert validate_tags(tags[:20]).is_valid

    def test_error_names_position(self):
        result = validate_tags(["#ok", "bad tag"])
        assert not result.is_valid
        assert result.errors[0].message.startswith("Tag 2:")


class TestNormalizeAndSanitize:
    """Canonical form of tags."""

    def test_normalize_adds_marker_and_lowercases(self):
        assert normalize_tag("  Scalp ") == "#scalp"
        assert normalize_tag("#Scalp") == "#scalp"
        assert normalize_tag("") == ""

    def test_sanitize_strips_invalid_characters(self):
        assert sanitize_tag("Breakout Trade!") == "#breakouttrade"
        assert sanitize_tag("#news-play") == "#newsplay"
        assert sanitize_tag("!!!") == ""
        assert sanitize_tag(42) == ""

    @pytest.mark.parametrize("raw", ["Scalp", "#Mean Reversion", "  #a_b-c ", "héllo", "##x"])
    def test_normalize_of_sanitized_is_idempotent(self, raw):
        sanitized = sanitize_tag(raw)
        assert normalize_tag(sanitized) == sanitized
        assert sanitize_tag(sanitized) == sanitized

    def test_strip_marker(self):
        assert strip_marker("#scalp") == "scalp"
        assert strip_marker("scalp") == "scalp"


class TestProcessTags:
    """Sanitize, validate and deduplicate a collection."""

    def test_dedupes_keeping_first_seen_order(self):
        assert process_tags(["#B", "a", "#b", "A!"]) == ["#b", "#a"]

    def test_drops_empty_and_too_long(self):
        assert process_tags(["", "!!", "#" + "x" * 60, "ok"]) == ["#ok"]

    def test_non_list_yields_empty(self):
        assert process_tags("#a") == []
        assert process_tags(None) == []


class TestCoerceTagList:
    """Interpretation of stored tag values."""

    def test_list_keeps_strings(self):
        assert coerce_tag_list(["#a", 3, "b"]) == ["#a", "b"]

    def test_legacy_comma_string(self):
        assert coerce_tag_list("scalp, #Swing ,") == ["scalp", "#Swing"]

    def test_missing_is_empty(self):
        assert coerce_tag_list(None) == []

    def test_unparseable(self):
        assert coerce_tag_list(123) is None
        assert coerce_tag_list({"tag": "a"}) is None

    def test_record_tags(self):
        assert record_tags("Scalp,swing,SCALP") == ["#scalp", "#swing"]
        assert record_tags(123) == []
