"""
Tests for the boolean tag query language.
"""
import pytest

from tradetags.core.errors import ValidationError
from tradetags.core.models import FilterMode
from tradetags.core.tag_query import (
    MATCH_ALL,
    QueryNodeType,
    TagQuery,
    filter_to_query,
    parse_query,
    validate_query,
)


def error_code(text):
    with pytest.raises(ValidationError) as excinfo:
        parse_query(text)
    return excinfo.value.issues[0].code


class TestParse:
    """Operator precedence, grouping and normalization."""

    def test_single_tag_is_normalized(self):
        query = parse_query("Scalp")
        assert query == TagQuery(QueryNodeType.TAG, value="#scalp")

    def test_and_binds_tighter_than_or(self):
        query = parse_query("#a OR #b AND #c")
        assert query.type == QueryNodeType.OR
        assert str(query) == "#a OR (#b AND #c)"

    def test_parentheses_override_precedence(self):
        assert str(parse_query("(#a OR #b) AND #c")) == "(#a OR #b) AND #c"

    def test_adjacent_terms_are_joined_with_and(self):
        assert parse_query("#a #b") == parse_query("#a AND #b")

    def test_operators_are_case_insensitive(self):
        assert parse_query("#a and not #b") == parse_query("#a AND NOT #b")

    def test_not_applies_to_the_next_operand(self):
        query = parse_query("NOT #a AND #b")
        assert query.type == QueryNodeType.AND
        assert query.children[0].type == QueryNodeType.NOT

    def test_double_negation(self):
        assert parse_query("NOT NOT #a").matches({"#a"})

    def test_round_trip_through_str(self):
        text = "#scalp AND NOT (#news OR #fomc)"
        query = parse_query(text)
        assert str(query) == text
        assert parse_query(str(query)) == query

    def test_terms_in_first_seen_order(self):
        assert parse_query("#b AND (#a OR NOT #b) #c").terms() == ["#b", "#a", "#c"]

    def test_empty_query_matches_all(self):
        assert parse_query("") is MATCH_ALL
        assert parse_query(None) is MATCH_ALL
        assert MATCH_ALL.matches(set())


class TestMatches:
    """Evaluation against a record's tag set."""

    @pytest.mark.parametrize("tags,expected", [
        ({"#scalp"}, True),
        ({"#scalp", "#news"}, False),
        ({"#scalp", "#london"}, True),
        ({"#london"}, False),
        (set(), False),
    ])
    def test_expression(self, tags, expected):
        query = parse_query("#scalp AND NOT (#news OR #fomc)")
        assert query.matches(tags) is expected


class TestInvalidQueries:
    """Malformed input raises ValidationError with a code."""

    @pytest.mark.parametrize("text,code", [
        ("(#a OR #b", "QUERY_UNBALANCED"),
        ("#a)", "QUERY_UNBALANCED"),
        ("#a AND", "QUERY_MISSING_OPERAND"),
        ("OR #a", "QUERY_MISSING_OPERAND"),
        ("#a AND OR #b", "QUERY_MISSING_OPERAND"),
        ("()", "QUERY_MISSING_OPERAND"),
        ("news!", "QUERY_INVALID_TAG"),
        ("#", "QUERY_INVALID_TAG"),
    ])
    def test_error_codes(self, text, code):
        assert error_code(text) == code

    def test_validate_query(self):
        assert validate_query("#a OR #b").is_valid
        result = validate_query("#a AND (")
        assert not result.is_valid
        assert result.errors[0].code == "QUERY_MISSING_OPERAND"


class TestFilterToQuery:
    """Include/exclude filters expressed as query strings."""

    def test_include_and_exclude(self):
        text = filter_to_query(["A", "b"], ["#c"], FilterMode.OR)
        assert text == "(#a OR #b) AND NOT #c"

    def test_single_include(self):
        assert filter_to_query(["#a"], mode="AND") == "#a"

    def test_exclude_only(self):
        assert filter_to_query([], ["#c", "#d"]) == "NOT #c AND NOT #d"

    def test_empty_filter(self):
        assert filter_to_query([]) == ""

    def test_result_parses_back(self):
        query = parse_query(filter_to_query(["#a", "#b"], ["#c"], "AND"))
        assert query.matches({"#a", "#b"})
        assert not query.matches({"#a", "#b", "#c"})

    def test_all_invalid_include_tags(self):
        with pytest.raises(ValidationError):
            filter_to_query(["!!!"])
