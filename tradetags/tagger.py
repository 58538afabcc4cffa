"""
Tag Manager
===========

Entry point for the presentation layer.

``TagManager`` owns one TagIndex per session and wires it into the analytics,
suggestion and migration services for one owner's records. The module-level
query functions are pure functions of their arguments: each call builds a
private index, so they are safe to call repeatedly with any record collection.
"""
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from tradetags.core.errors import ValidationError
from tradetags.core.models import (
    BulkTagOperation, FilterMode, MigrationConfig, MigrationReport, MigrationResult, TagAnalytics,
    TagFilter, TagIndexEntry, TagPerformance, TagSuggestion, TradeRecord,
)
from tradetags.core.repository import BackupStore, RecordRepository
from tradetags.core.tag_index import TagIndex
from tradetags.core.tag_normalizer import process_tags, record_tags, validate_tags
from tradetags.services.analytics import TagAnalyticsEngine
from tradetags.services.bulk_operations import BulkTagService
from tradetags.services.migration import MigrationPipeline, TagMigration
from tradetags.services.suggestions import TagSuggestionEngine

logger = logging.getLogger(__name__)


class TagManager:
    """
    Manages tags for one owner's trade records.

    Integrates with a RecordRepository for persistent storage and keeps the
    tag index in step with writes made through it.
    """

    def __init__(
        self,
        repository: RecordRepository,
        owner_id: str,
        backup_store: Optional[BackupStore] = None,
        index: Optional[TagIndex] = None,
    ):
        """
        Initialize the TagManager.

        Parameters
        ----
        repository : RecordRepository
            Authoritative record store
        owner_id : str
            Owner whose records are managed
        backup_store : BackupStore, optional
            Store for migration snapshots. Falls back to the repository when
            it also implements BackupStore.
        index : TagIndex, optional
            Shared tag index. A new one is created if omitted.
        """
        self.repository = repository
        self.owner_id = owner_id
        if backup_store is None and isinstance(repository, BackupStore):
            backup_store = repository
        self.backup_store = backup_store
        self.index = index if index is not None else TagIndex()
        self.analytics = TagAnalyticsEngine(self.index)
        self.suggestions = TagSuggestionEngine(self.index)
        self.bulk = BulkTagService(repository, self.backup_store, self.index)

    def records(self) -> List[TradeRecord]:
        return self.repository.list(self.owner_id)

    def get_tags(self, record_id: str) -> List[str]:
        """Normalized tags of a record (empty if it does not exist)."""
        for record in self.records():
            if record.id == record_id:
                return record_tags(record.tags)
        return []

    def add_tags(self, record_id: str, tags: List[str]) -> List[str]:
        """
        Add tags to a record.

        Parameters
        ----
        record_id : str
            Record to tag
        tags : List[str]
            Tags to add (normalized; invalid ones are dropped)

        Returns
        ----
        List[str]
            The record's tags after the update

        Raises
        ----
        ValidationError
            If the record would carry more tags than allowed
        """
        current = self.get_tags(record_id)
        updated = process_tags(current + list(tags))
        result = validate_tags(updated)
        if not result.is_valid:
            raise ValidationError(f"Cannot tag record {record_id}: {result.errors[0].message}", result.errors)
        if updated != current:
            self._write_tags(record_id, updated)
        return updated

    def remove_tags(self, record_id: str, tags: List[str]) -> List[str]:
        """Remove tags from a record. Returns the remaining tags."""
        removed = set(process_tags(list(tags)))
        current = self.get_tags(record_id)
        updated = [tag for tag in current if tag not in removed]
        if updated != current:
            self._write_tags(record_id, updated)
        return updated

    def _write_tags(self, record_id: str, tags: List[str]):
        if self.repository.update(self.owner_id, record_id, {"tags": tags}):
            self.index.invalidate()
        else:
            logger.warning("Could not update tags of record %s", record_id)

    def most_used(self, limit: int = 10) -> List[TagIndexEntry]:
        return self.analytics.most_used(self.records(), limit)

    def recent(self, limit: int = 10) -> List[TagIndexEntry]:
        return self.analytics.most_recent(self.records(), limit)

    def search(self, query: str) -> List[TagIndexEntry]:
        return self.analytics.search(self.records(), query)

    def filter(self, tag_filter: TagFilter) -> List[TradeRecord]:
        return self.analytics.filter_records(self.records(), tag_filter)

    def performance(self, tag: str) -> TagPerformance:
        return self.analytics.performance(self.records(), tag)

    def summary(self, limit: int = 10) -> TagAnalytics:
        return self.analytics.analytics(self.records(), limit)

    def suggest(self, partial_input: str, context: Optional[Mapping[str, Any]] = None,
                limit: int = 10) -> List[TagSuggestion]:
        return self.suggestions.suggest(self.records(), partial_input, context, limit)

    def orphaned_tags(self) -> List[str]:
        """Tags still in the index that no stored record carries."""
        records = self.records()
        self.index.get_all(records)
        return self.index.orphaned_tags(records)

    def pipeline(self, default_tags: Sequence[str] = (), config: Optional[MigrationConfig] = None) -> MigrationPipeline:
        """Tag migration pipeline bound to this manager's stores and index."""
        return MigrationPipeline(
            self.repository,
            self.backup_store,
            migration=TagMigration(default_tags),
            index=self.index,
            config=config,
        )

    def analyze_migration(self, default_tags: Sequence[str] = ()) -> MigrationReport:
        return self.pipeline(default_tags).analyze(self.records())

    def run_migration(self, config: Optional[MigrationConfig] = None, default_tags: Sequence[str] = (),
                      **kwargs) -> MigrationResult:
        return self.pipeline(default_tags, config).run(self.owner_id, self.records(), config, **kwargs)

    def search_records(self, query: str) -> List[TradeRecord]:
        """Records matching a boolean tag query such as ``#a AND NOT #b``."""
        return self.analytics.search_records(self.records(), query)

    def preview_bulk_operation(self, operation: BulkTagOperation) -> MigrationReport:
        return self.bulk.preview(self.owner_id, operation, self.records())

    def bulk_operation(self, operation: BulkTagOperation, config: Optional[MigrationConfig] = None,
                       **kwargs) -> MigrationResult:
        """
        Delete, merge, rename or replace tags across all records.

        Raises
        ----
        ValidationError
            If the operation is invalid
        """
        return self.bulk.execute(self.owner_id, operation, self.records(), config, **kwargs)

    def undo_bulk_operation(self) -> MigrationResult:
        return self.bulk.rollback_last(self.owner_id)


def most_used_tags(records: Iterable[TradeRecord], limit: int = 10) -> List[TagIndexEntry]:
    return TagAnalyticsEngine().most_used(records, limit)


def recent_tags(records: Iterable[TradeRecord], limit: int = 10) -> List[TagIndexEntry]:
    return TagAnalyticsEngine().most_recent(records, limit)


def search_tags(records: Iterable[TradeRecord], query: str) -> List[TagIndexEntry]:
    return TagAnalyticsEngine().search(records, query)


def filter_records_by_tags(
    records: Iterable[TradeRecord],
    include_tags: Sequence[str] = (),
    exclude_tags: Sequence[str] = (),
    mode: Union[FilterMode, str] = FilterMode.AND,
    search_query: Optional[str] = None,
) -> List[TradeRecord]:
    tag_filter = TagFilter(list(include_tags), list(exclude_tags), FilterMode(mode), search_query)
    return TagAnalyticsEngine().filter_records(records, tag_filter)


def tag_performance(records: Iterable[TradeRecord], tag: str) -> TagPerformance:
    return TagAnalyticsEngine().performance(records, tag)


def search_records(records: Iterable[TradeRecord], query: str) -> List[TradeRecord]:
    return TagAnalyticsEngine().search_records(records, query)


def suggest_tags(
    records: Iterable[TradeRecord],
    partial_input: str,
    context: Optional[Union[TradeRecord, Dict[str, Any]]] = None,
    limit: int = 10,
) -> List[TagSuggestion]:
    return TagSuggestionEngine().suggest(records, partial_input, context, limit)
