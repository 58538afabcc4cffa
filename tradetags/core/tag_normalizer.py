"""
Tag Normalizer
==============

Validation, sanitization and canonicalization of free-text trade labels.

A normalized tag is lower-case, starts with the ``#`` marker and contains
1-50 characters from ``[a-z0-9_]`` after the marker. ``process_tags`` is the
single normalization path used by the index, analytics, suggestions and
migrations.
"""
import re
from typing import Any, List, Optional

from tradetags.core.models import ValidationIssue, ValidationResult

TAG_MARKER = "#"
MAX_TAG_LENGTH = 50
MAX_TAGS_PER_RECORD = 20

_VALID_CONTENT = re.compile(r"^[a-zA-Z0-9_]+$")
_INVALID_CHARS = re.compile(r"[^a-zA-Z0-9_]")


def _content(raw: str) -> str:
    """Trimmed tag text with a single leading marker removed."""
    trimmed = raw.strip()
    if trimmed.startswith(TAG_MARKER):
        return trimmed[1:]
    return trimmed


def strip_marker(tag: str) -> str:
    """Return tag content without the marker prefix."""
    return tag[1:] if tag.startswith(TAG_MARKER) else tag


def validate_tag(raw: Any) -> ValidationResult:
    """
    Validate a single tag.

    Parameters
    ----
    raw : str
        Raw tag text, with or without the marker

    Returns
    ----
    ValidationResult
        All applicable errors (TAG_EMPTY, TAG_TOO_LONG, TAG_INVALID_CHARS)
    """
    errors: List[ValidationIssue] = []

    if not isinstance(raw, str) or not raw.strip():
        errors.append(ValidationIssue("TAG_EMPTY", "Tag cannot be empty"))
        return ValidationResult(is_valid=False, errors=errors)

    content = _content(raw)

    if len(content) == 0:
        errors.append(ValidationIssue("TAG_EMPTY", "Tag cannot be empty"))

    if len(content) > MAX_TAG_LENGTH:
        errors.append(ValidationIssue(
            "TAG_TOO_LONG", f"Tag cannot be longer than {MAX_TAG_LENGTH} characters"))

    if content and not _VALID_CONTENT.match(content):
        errors.append(ValidationIssue(
            "TAG_INVALID_CHARS", "Tag can only contain letters, numbers, and underscores"))

    return ValidationResult(is_valid=not errors, errors=errors)


def validate_tags(tags: Any) -> ValidationResult:
    """
    Validate a whole tag collection.

    Per-tag errors are reported with the 1-based position of the offending tag.
    """
    if not isinstance(tags, (list, tuple)):
        return ValidationResult(
            is_valid=False,
            errors=[ValidationIssue("TAGS_NOT_LIST", "Tags must be a list")],
        )

    errors: List[ValidationIssue] = []
    if len(tags) > MAX_TAGS_PER_RECORD:
        errors.append(ValidationIssue(
            "TOO_MANY_TAGS", f"Cannot have more than {MAX_TAGS_PER_RECORD} tags"))

    for position, tag in enumerate(tags, start=1):
        for issue in validate_tag(tag).errors:
            errors.append(ValidationIssue(issue.code, f"Tag {position}: {issue.message}", issue.severity))

    return ValidationResult(is_valid=not errors, errors=errors)


def normalize_tag(raw: str) -> str:
    """Trim, lower-case and ensure the marker prefix. Does not validate."""
    if not raw:
        return ""
    trimmed = raw.strip().lower()
    if not trimmed:
        return ""
    if not trimmed.startswith(TAG_MARKER):
        return f"{TAG_MARKER}{trimmed}"
    return trimmed


def sanitize_tag(raw: Any) -> str:
    """
    Normalize a tag and strip characters that are not allowed in tag content.

    Returns
    ----
    str
        Sanitized tag, or an empty string if no valid content remains
    """
    if not isinstance(raw, str):
        return ""
    clean = _INVALID_CHARS.sub("", _content(raw)).lower()
    return f"{TAG_MARKER}{clean}" if clean else ""


def process_tags(raw_tags: Any) -> List[str]:
    """
    Sanitize, validate and deduplicate a tag collection.

    First-seen order is preserved. Non-list input yields an empty list.
    """
    if not isinstance(raw_tags, (list, tuple)):
        return []

    processed: List[str] = []
    seen = set()
    for raw in raw_tags:
        tag = sanitize_tag(raw)
        if not tag:
            continue
        if not validate_tag(tag).is_valid:
            continue
        if tag in seen:
            continue
        seen.add(tag)
        processed.append(tag)
    return processed


def coerce_tag_list(raw: Any) -> Optional[List[str]]:
    """
    Interpret a stored tags value as a list of raw label strings.

    Lists keep their string items, legacy comma-separated strings are split,
    and a missing value is an empty list. Any other shape is unparseable and
    yields None.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        return [part.strip() for part in raw.split(",") if part.strip()]
    if isinstance(raw, (list, tuple)):
        return [item for item in raw if isinstance(item, str)]
    return None


def record_tags(raw: Any) -> List[str]:
    """Normalized tags of a record's stored tags value (empty if unparseable)."""
    return process_tags(coerce_tag_list(raw) or [])
