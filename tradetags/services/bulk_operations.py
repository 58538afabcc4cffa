"""
Bulk tag operations.

Delete, merge, rename or replace tags across all of an owner's records.
Operations run through the migration pipeline as a ``BulkTagMigration``, so
they get the same backup, per-record isolation, progress, dry-run and rollback
behaviour as the tag migration. The last operation can be undone from its
backup, and every run is recorded in the bulk operation history.
"""
import dataclasses
import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from tradetags.core.errors import ValidationError
from tradetags.core.models import (
    BulkOperationType, BulkTagOperation, MigrationConfig, MigrationReport,
    MigrationResult, TradeRecord, ValidationIssue, ValidationResult,
)
from tradetags.core.performance import calculate_tag_performance
from tradetags.core.repository import BackupStore, RecordRepository
from tradetags.core.tag_index import TagIndex
from tradetags.core.tag_normalizer import (
    coerce_tag_list, process_tags, record_tags, sanitize_tag, validate_tag,
)
from tradetags.services.migration import (
    CancelFlag, Migration, MigrationPipeline, ProgressCallback, validate_tag_fields,
)

logger = logging.getLogger(__name__)

HIGH_USAGE_THRESHOLD = 20
HIGH_WIN_RATE = 70.0
MIN_CLOSED_FOR_WIN_RATE = 5


class BulkTagMigration(Migration):
    """
    Apply one BulkTagOperation to every record carrying a selected tag.

    Records without any selected tag are left untouched, whatever shape their
    tags are stored in. Without an operation the migration changes nothing;
    such an instance addresses the backup and history of bulk operations.
    """

    name = "bulk_tags"
    description = "Bulk tag operations"
    required_fields = ("id", "tags")

    def __init__(self, operation: Optional[BulkTagOperation] = None):
        self.operation = operation
        self.sources: List[str] = []
        self.target = ""
        if operation is not None:
            self.sources = process_tags(operation.tags)
            self.target = sanitize_tag(operation.target) if operation.target else ""
            self.description = operation.describe()

    def plan(self, record: TradeRecord) -> Dict[str, Any]:
        if self.operation is None or not self.sources:
            return {}
        raw = coerce_tag_list(record.tags)
        if raw is None:
            return {}

        current = process_tags(raw)
        if not any(tag in self.sources for tag in current):
            return {}

        kind = self.operation.kind
        kept = [tag for tag in current if tag not in self.sources]
        if kind == BulkOperationType.DELETE:
            updated = kept
        elif kind == BulkOperationType.MERGE:
            updated = kept + [self.target]
        else:
            updated = [self.target if tag in self.sources else tag for tag in current]

        updated = process_tags(updated)
        if isinstance(record.tags, list) and updated == record.tags:
            return {}
        return {"tags": updated}

    def validate(self, record: TradeRecord, fields: Dict[str, Any]) -> ValidationResult:
        return validate_tag_fields(record, fields)


def validate_operation(operation: BulkTagOperation, records: Iterable[TradeRecord]) -> ValidationResult:
    """
    Check a bulk operation before it runs.

    Errors make the operation invalid: no valid selected tag, a missing or
    invalid target, or a rename of more than one tag. Warnings flag risky but
    allowed operations: selected tags nobody uses, tags used by many records,
    deleting a tag with a high win rate and renaming onto an existing tag.
    """
    records = list(records)
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []
    kind = operation.kind
    sources = process_tags(operation.tags)

    if not sources:
        errors.append(ValidationIssue("BULK_NO_TAGS", "No valid tags selected for operation"))

    if kind != BulkOperationType.DELETE:
        if not operation.target:
            errors.append(ValidationIssue(
                "BULK_TARGET_REQUIRED", f"A target tag is required for {kind.value}"))
        else:
            for issue in validate_tag(operation.target).errors:
                errors.append(ValidationIssue(issue.code, f"Target: {issue.message}"))

    if kind == BulkOperationType.RENAME and len(sources) > 1:
        errors.append(ValidationIssue(
            "BULK_RENAME_SINGLE_TAG", "Rename can only be applied to a single tag"))

    if not records:
        warnings.append(ValidationIssue("BULK_NO_RECORDS", "No records available to process", "warning"))

    carrying: Dict[str, List[TradeRecord]] = defaultdict(list)
    for record in records:
        for tag in record_tags(record.tags):
            carrying[tag].append(record)

    for tag in sources:
        tagged = carrying.get(tag, [])
        if not tagged:
            warnings.append(ValidationIssue(
                "BULK_TAG_UNUSED", f"Tag {tag} is not used by any record", "warning"))
            continue
        if len(tagged) > HIGH_USAGE_THRESHOLD:
            warnings.append(ValidationIssue(
                "BULK_HIGH_USAGE",
                f"Tag {tag} is used in {len(tagged)} records. Consider the impact carefully.",
                "warning",
            ))
        if kind == BulkOperationType.DELETE:
            perf = calculate_tag_performance(tag, tagged)
            if perf.total_trades >= MIN_CLOSED_FOR_WIN_RATE and perf.win_rate > HIGH_WIN_RATE:
                warnings.append(ValidationIssue(
                    "BULK_HIGH_WIN_RATE",
                    f"Tag {tag} has a win rate of {perf.win_rate:.1f}%. Consider renaming instead of deleting.",
                    "warning",
                ))

    target = sanitize_tag(operation.target) if operation.target else ""
    if kind == BulkOperationType.RENAME and target in carrying and target not in sources:
        warnings.append(ValidationIssue(
            "BULK_TARGET_EXISTS", f"Tag {target} already exists; renaming merges the two tags", "warning"))

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


class BulkTagService:
    """
    Runs bulk tag operations for the owners of a RecordRepository.

    Parameters
    ----
    repository : RecordRepository
        Record store read and written by the operations
    backup_store : BackupStore, optional
        Store for the pre-operation backup and the operation history
    index : TagIndex, optional
        Tag index invalidated after records were written
    """

    def __init__(
        self,
        repository: RecordRepository,
        backup_store: Optional[BackupStore] = None,
        index: Optional[TagIndex] = None,
    ):
        self.repository = repository
        self.backup_store = backup_store
        self.index = index

    def pipeline(self, operation: Optional[BulkTagOperation] = None) -> MigrationPipeline:
        return MigrationPipeline(
            self.repository,
            self.backup_store,
            migration=BulkTagMigration(operation),
            index=self.index,
        )

    def _records(self, owner_id: str, records: Optional[Iterable[TradeRecord]]) -> List[TradeRecord]:
        return list(self.repository.list(owner_id) if records is None else records)

    def validate(self, owner_id: str, operation: BulkTagOperation,
                 records: Optional[Iterable[TradeRecord]] = None) -> ValidationResult:
        return validate_operation(operation, self._records(owner_id, records))

    def preview(self, owner_id: str, operation: BulkTagOperation,
                records: Optional[Iterable[TradeRecord]] = None) -> MigrationReport:
        """Per-record changes the operation would make. Writes nothing."""
        return self.pipeline(operation).analyze(self._records(owner_id, records))

    def execute(
        self,
        owner_id: str,
        operation: BulkTagOperation,
        records: Optional[Iterable[TradeRecord]] = None,
        config: Optional[MigrationConfig] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel: Optional[CancelFlag] = None,
    ) -> MigrationResult:
        """
        Validate and run a bulk operation.

        Validation warnings are logged and prepended to the result warnings.

        Raises
        ----
        ValidationError
            If the operation is invalid. Nothing is written.
        """
        records = self._records(owner_id, records)
        validation = validate_operation(operation, records)
        if not validation.is_valid:
            messages = "; ".join(issue.message for issue in validation.errors)
            raise ValidationError(f"Invalid {operation.kind.value} operation: {messages}", validation.errors)
        for issue in validation.warnings:
            logger.warning(issue.message)

        logger.info("Running bulk operation: %s", operation.describe())
        result = self.pipeline(operation).run(owner_id, records, config, progress_callback, cancel)
        if validation.warnings:
            result = dataclasses.replace(
                result,
                warnings=tuple(issue.message for issue in validation.warnings) + result.warnings,
            )
        return result

    def rollback_last(self, owner_id: str) -> MigrationResult:
        """
        Restore every record from the backup taken before the last operation.

        Raises
        ----
        TradeTagsError
            If no bulk operation backup exists for the owner
        """
        return self.pipeline().rollback(owner_id)

    def history(self, owner_id: str) -> List[Dict[str, Any]]:
        return self.pipeline().history(owner_id)
