"""
Tag Query Language
==================

Boolean search expressions over record tags::

    #scalp AND #london
    #breakout OR #reversal
    #scalp AND NOT (#news OR #fomc)

``NOT`` binds tighter than ``AND``, which binds tighter than ``OR``; adjacent
terms without an operator are joined with ``AND``. Operators are
case-insensitive and terms go through the tag normalizer, so ``Scalp`` means
``#scalp``. An empty query matches every record.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Collection, List, Optional, Sequence, Tuple, Union

from tradetags.core.errors import ValidationError
from tradetags.core.models import FilterMode, ValidationIssue, ValidationResult
from tradetags.core.tag_normalizer import process_tags, sanitize_tag, validate_tag

_TOKEN = re.compile(r"\(|\)|[^\s()]+")
OPERATORS = ("AND", "OR", "NOT")


class QueryNodeType(str, Enum):
    TAG = "TAG"
    AND = "AND"
    OR = "OR"
    NOT = "NOT"


@dataclass(frozen=True)
class TagQuery:
    """
    Parsed query node.

    TAG nodes carry a normalized tag in `value`; AND, OR and NOT nodes carry
    their operands in `children`. An AND node without children matches
    everything.
    """
    type: QueryNodeType
    value: Optional[str] = None
    children: Tuple["TagQuery", ...] = ()

    def matches(self, tags: Collection[str]) -> bool:
        """True if a record carrying the normalized `tags` satisfies the query."""
        if self.type == QueryNodeType.TAG:
            return self.value in tags
        if self.type == QueryNodeType.AND:
            return all(child.matches(tags) for child in self.children)
        if self.type == QueryNodeType.OR:
            return any(child.matches(tags) for child in self.children)
        return not self.children[0].matches(tags)

    def terms(self) -> List[str]:
        """Tags named anywhere in the query, in first-seen order."""
        found: List[str] = []
        stack = [self]
        while stack:
            node = stack.pop()
            if node.type == QueryNodeType.TAG:
                if node.value not in found:
                    found.append(node.value)
            else:
                stack.extend(reversed(node.children))
        return found

    def __str__(self) -> str:
        if self.type == QueryNodeType.TAG:
            return self.value
        if self.type == QueryNodeType.NOT:
            return f"NOT {_wrap(self.children[0])}"
        return f" {self.type.value} ".join(_wrap(child) for child in self.children)


MATCH_ALL = TagQuery(QueryNodeType.AND)


def _wrap(node: TagQuery) -> str:
    if node.type in (QueryNodeType.AND, QueryNodeType.OR) and len(node.children) > 1:
        return f"({node})"
    return str(node)


def _error(code: str, message: str) -> ValidationError:
    return ValidationError(message, [ValidationIssue(code, message)])


def _is_operator(token: Optional[str], operator: Optional[str] = None) -> bool:
    if token is None:
        return False
    upper = token.upper()
    return upper == operator if operator else upper in OPERATORS


class _Parser:
    """Recursive-descent parser over the token list of one query."""

    def __init__(self, tokens: List[str]):
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> Optional[str]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self) -> Optional[str]:
        token = self.peek()
        self.pos += 1
        return token

    def parse(self) -> TagQuery:
        node = self.parse_or()
        token = self.peek()
        if token == ")":
            raise _error("QUERY_UNBALANCED", "Unmatched closing parenthesis")
        if token is not None:
            raise _error("QUERY_SYNTAX", f"Unexpected {token!r}")
        return node

    def parse_or(self) -> TagQuery:
        children = [self.parse_and()]
        while _is_operator(self.peek(), "OR"):
            self.take()
            children.append(self.parse_and())
        return children[0] if len(children) == 1 else TagQuery(QueryNodeType.OR, children=tuple(children))

    def parse_and(self) -> TagQuery:
        children = [self.parse_not()]
        while True:
            token = self.peek()
            if _is_operator(token, "AND"):
                self.take()
            elif token is None or token == ")" or _is_operator(token, "OR"):
                break
            children.append(self.parse_not())
        return children[0] if len(children) == 1 else TagQuery(QueryNodeType.AND, children=tuple(children))

    def parse_not(self) -> TagQuery:
        if _is_operator(self.peek(), "NOT"):
            self.take()
            return TagQuery(QueryNodeType.NOT, children=(self.parse_not(),))
        return self.parse_term()

    def parse_term(self) -> TagQuery:
        token = self.take()
        if token is None:
            raise _error("QUERY_MISSING_OPERAND", "Query ends where a tag was expected")
        if token == "(":
            node = self.parse_or()
            if self.take() != ")":
                raise _error("QUERY_UNBALANCED", "Unmatched opening parenthesis")
            return node
        if token == ")" or _is_operator(token):
            raise _error("QUERY_MISSING_OPERAND", f"Expected a tag before {token.upper()!r}")

        result = validate_tag(token)
        if not result.is_valid:
            raise _error("QUERY_INVALID_TAG", f"Invalid tag {token!r}: {result.errors[0].message}")
        return TagQuery(QueryNodeType.TAG, value=sanitize_tag(token))


def parse_query(text: Optional[str]) -> TagQuery:
    """
    Parse a boolean tag query.

    Parameters
    ----
    text : str
        Query such as ``"#a AND (#b OR NOT #c)"``. Empty or None matches all.

    Returns
    ----
    TagQuery

    Raises
    ----
    ValidationError
        On unbalanced parentheses, a missing operand or an invalid tag
    """
    tokens = _TOKEN.findall(text or "")
    if not tokens:
        return MATCH_ALL
    return _Parser(tokens).parse()


def validate_query(text: Optional[str]) -> ValidationResult:
    """Syntax check of a query without raising."""
    try:
        parse_query(text)
    except ValidationError as e:
        return ValidationResult(is_valid=False, errors=list(e.issues))
    return ValidationResult(is_valid=True)


def filter_to_query(
    include_tags: Sequence[str],
    exclude_tags: Sequence[str] = (),
    mode: Union[FilterMode, str] = FilterMode.AND,
) -> str:
    """
    Express an include/exclude tag filter as a query string.

    Raises
    ----
    ValidationError
        If include tags were given but none of them is a valid tag
    """
    include = process_tags(list(include_tags))
    exclude = process_tags(list(exclude_tags))
    if include_tags and not include:
        raise _error("QUERY_INVALID_TAG", "None of the include tags is a valid tag")

    parts = []
    if len(include) == 1:
        parts.append(include[0])
    elif include:
        parts.append("(" + f" {FilterMode(mode).value} ".join(include) + ")")
    parts.extend(f"NOT {tag}" for tag in exclude)
    return " AND ".join(parts)
