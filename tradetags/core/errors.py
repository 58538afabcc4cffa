"""
Exception hierarchy for tag processing and record migration.
"""
from typing import List, Optional


class TradeTagsError(Exception):
    """Base class for errors raised by this package."""


class ValidationError(TradeTagsError):
    """Tag content is malformed. Carries the individual validation issues."""

    def __init__(self, message: str, issues: Optional[List] = None):
        super().__init__(message)
        self.issues = issues or []


class RecordMigrationError(TradeTagsError):
    """A single record failed to back up, transform or write."""

    def __init__(self, record_id: str, message: str):
        super().__init__(message)
        self.record_id = record_id
        self.message = message


class RepositoryError(TradeTagsError):
    """The record store or backup store is unreachable or failed."""


class ValidationMismatchWarning(UserWarning):
    """Post-migration count or required-field check found a discrepancy."""
