"""
Record migration pipeline.

Transforms stored trade records into a target shape one record at a time.
Each run moves through the states
Idle -> Analyzing -> Backing Up -> Batch Processing -> Validating -> Completed
(or CompletedWithErrors). A failing record is recorded and skipped; it never
stops the rest of its batch or the batches after it. A repository outage
aborts the remainder of the run and returns what was done so far.
"""
import logging
import threading
import time
import warnings
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from tradetags.core.db import TradeDatabase
from tradetags.core.errors import (
    RecordMigrationError, RepositoryError, TradeTagsError, ValidationMismatchWarning,
)
from tradetags.core.models import (
    FieldChange, MigrationConfig, MigrationError, MigrationReport, MigrationResult,
    MigrationState, RecordAnalysis, RollbackSnapshot, TradeRecord, ValidationIssue,
    ValidationResult,
)
from tradetags.core.repository import BackupStore, RecordRepository
from tradetags.core.tag_index import TagIndex
from tradetags.core.tag_normalizer import coerce_tag_list, process_tags, validate_tags

logger = logging.getLogger(__name__)

# Rough per-record cost used for the duration estimate in analysis reports
SECONDS_PER_RECORD = 0.1
MAX_HISTORY_ENTRIES = 50

ProgressCallback = Callable[[str, int, int], None]
CancelFlag = Union[threading.Event, Callable[[], bool]]


class Migration(ABC):
    """
    A record transformation.

    Subclasses describe the target shape: ``plan`` returns the fields that
    must change for a record to reach it (empty when the record already
    conforms) and ``validate`` checks a transformed record.
    """

    name = "migration"
    description = ""
    required_fields: Sequence[str] = ("id",)

    @abstractmethod
    def plan(self, record: TradeRecord) -> Dict[str, Any]:
        """
        Fields to overwrite on `record`.

        Raises
        ---
        RecordMigrationError
            If the record cannot be transformed
        """

    @abstractmethod
    def validate(self, record: TradeRecord, fields: Dict[str, Any]) -> ValidationResult:
        """Validate `record` as it would look with `fields` applied."""

    def changes(self, record: TradeRecord, fields: Dict[str, Any]) -> List[FieldChange]:
        current = record.to_dict()
        return [
            FieldChange(record.id, name, current.get(name), value)
            for name, value in fields.items()
        ]


def validate_tag_fields(record: TradeRecord, fields: Dict[str, Any]) -> ValidationResult:
    """Validate the tags `record` would carry with `fields` applied, plus its id."""
    result = validate_tags(fields.get("tags", record.tags))
    if not record.id:
        result.errors.insert(0, ValidationIssue("ID_MISSING", "Record id is required"))
        result.is_valid = False
    return result


class TagMigration(Migration):
    """
    Normalize every record's tag list.

    Legacy comma-separated strings are split, each label is sanitized and
    validated, and duplicates are dropped keeping first-seen order. Records
    left without tags receive `default_tags` when given.
    """

    name = "tags"
    description = "Normalize trade tags to the #tag format"
    required_fields = ("id", "tags")

    def __init__(self, default_tags: Sequence[str] = ()):
        self.default_tags = process_tags(list(default_tags))

    def plan(self, record: TradeRecord) -> Dict[str, Any]:
        raw = coerce_tag_list(record.tags)
        if raw is None:
            raise RecordMigrationError(
                record.id,
                f"Unparseable tags value of type {type(record.tags).__name__}",
            )

        processed = process_tags(raw)
        if not processed and self.default_tags:
            processed = list(self.default_tags)

        if isinstance(record.tags, list) and processed == record.tags:
            return {}
        return {"tags": processed}

    def validate(self, record: TradeRecord, fields: Dict[str, Any]) -> ValidationResult:
        return validate_tag_fields(record, fields)


def _is_cancelled(cancel: Optional[CancelFlag]) -> bool:
    if cancel is None:
        return False
    if isinstance(cancel, threading.Event):
        return cancel.is_set()
    return bool(cancel())


def _batches(items: List[TradeRecord], size: int) -> List[List[TradeRecord]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class _RunState:
    """Mutable accumulator for one run; frozen into a MigrationResult at the end."""

    def __init__(self):
        self.migrated = 0
        self.failed = 0
        self.converted = 0
        self.errors: List[MigrationError] = []
        self.warnings: List[str] = []
        self.change_log: List[FieldChange] = []
        self.converted_ids: List[str] = []

    def fail(self, record_id: str, message: str, severity: str = "error"):
        self.failed += 1
        self.errors.append(MigrationError(record_id, message, severity))


class MigrationPipeline:
    """
    Runs a Migration against a RecordRepository.

    Parameters
    ----
    repository : RecordRepository
        Authoritative record store written by ``run`` and ``rollback``
    backup_store : BackupStore, optional
        Durable store for rollback snapshots and run history
    migration : Migration, optional
        Transformation to apply. Defaults to TagMigration().
    index : TagIndex, optional
        Tag index invalidated after records were written
    config : MigrationConfig, optional
        Default options for ``run``
    """

    def __init__(
        self,
        repository: RecordRepository,
        backup_store: Optional[BackupStore] = None,
        migration: Optional[Migration] = None,
        index: Optional[TagIndex] = None,
        config: Optional[MigrationConfig] = None,
    ):
        self.repository = repository
        self.backup_store = backup_store
        self.migration = migration or TagMigration()
        self.index = index
        self.config = config or MigrationConfig()
        self.state = MigrationState.IDLE

    def _enter(self, state: MigrationState):
        self.state = state
        logger.info("Migration %s: %s", self.migration.name, state.value)

    def backup_key(self, owner_id: str) -> str:
        return f"{owner_id}:{self.migration.name}"

    def history_key(self, owner_id: str) -> str:
        return f"{owner_id}:{self.migration.name}:history"

    def analyze(self, records: Iterable[TradeRecord]) -> MigrationReport:
        """
        Report what ``run`` would change, without writing anything.

        Parameters
        ----
        records : Iterable[TradeRecord]
            Records to inspect

        Returns
        ----
        MigrationReport
            Per-record changes and issues, summary counts and recommendations
        """
        records = list(records)
        report = MigrationReport(migration=self.migration.name, total_records=len(records))

        for record in records:
            raw = coerce_tag_list(record.tags)
            if raw is None or not validate_tags(raw).is_valid:
                report.records_with_invalid_tags += 1

            try:
                fields = self.migration.plan(record)
            except RecordMigrationError as e:
                report.unmigratable_records += 1
                report.records.append(RecordAnalysis(
                    record_id=record.id,
                    needs_migration=True,
                    issues=[e.message],
                    migratable=False,
                ))
                continue

            analysis = RecordAnalysis(
                record_id=record.id,
                needs_migration=bool(fields),
                changes=self.migration.changes(record, fields),
            )
            if fields:
                validation = self.migration.validate(record, fields)
                analysis.issues = [issue.message for issue in validation.errors]
                report.records_needing_migration += 1
            else:
                report.records_already_migrated += 1
            report.records.append(analysis)

        report.estimated_seconds = round(report.records_needing_migration * SECONDS_PER_RECORD, 2)
        report.recommendations = self._recommendations(report)
        return report

    def _recommendations(self, report: MigrationReport) -> List[str]:
        recommendations = []
        if report.records_needing_migration == 0:
            recommendations.append("All records are already migrated. No action needed.")
            return recommendations
        recommendations.append(
            f"{report.records_needing_migration} records need migration. "
            "Back up your data before running it."
        )
        if report.unmigratable_records:
            recommendations.append(
                f"{report.unmigratable_records} records have unparseable tags and will be "
                "reported as failures. Fix them manually."
            )
        if report.records_with_invalid_tags:
            recommendations.append(
                f"{report.records_with_invalid_tags} records carry invalid tags that will be "
                "sanitized or dropped."
            )
        if report.records_needing_migration > 1000:
            recommendations.append(
                "Large dataset detected. Consider a larger batch size or running during off-hours."
            )
        return recommendations

    def run(
        self,
        owner_id: str,
        records: Optional[Iterable[TradeRecord]] = None,
        config: Optional[MigrationConfig] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel: Optional[CancelFlag] = None,
    ) -> MigrationResult:
        """
        Migrate an owner's records.

        Parameters
        ----
        owner_id : str
            Owner whose records are written
        records : Iterable[TradeRecord], optional
            Records to migrate. Listed from the repository if None.
        config : MigrationConfig, optional
            Overrides the pipeline's default options
        progress_callback : callable, optional
            Called as (record_id, total, current) after each record
        cancel : threading.Event or callable, optional
            Checked between records; when set the run stops with state CANCELLED

        Returns
        ----
        MigrationResult
            Counts, per-record errors, warnings and the rollback snapshot
        """
        config = config or self.config
        started_at = datetime.now()
        records = list(self.repository.list(owner_id) if records is None else records)
        total = len(records)
        acc = _RunState()
        snapshot = None

        def finish(state: MigrationState) -> MigrationResult:
            self._enter(state)
            result = MigrationResult(
                migration=self.migration.name,
                state=state,
                total_records=total,
                migrated_count=acc.migrated,
                failed_count=acc.failed,
                converted_count=acc.converted,
                errors=tuple(acc.errors),
                warnings=tuple(acc.warnings),
                change_log=tuple(acc.change_log),
                rollback_snapshot=snapshot,
                dry_run=config.dry_run,
                started_at=started_at,
                finished_at=datetime.now(),
            )
            logger.info(
                "Migration %s finished: %d migrated, %d failed, %d converted of %d",
                self.migration.name, acc.migrated, acc.failed, acc.converted, total,
            )
            if not config.dry_run:
                self._record_history(owner_id, result)
            return result

        self._enter(MigrationState.ANALYZING)
        if total == 0:
            acc.warnings.append("No records to migrate")
            return finish(MigrationState.COMPLETED)

        if config.backup_before_migration and not config.dry_run:
            self._enter(MigrationState.BACKING_UP)
            try:
                snapshot = self._create_backup(owner_id, records)
            except Exception as e:
                logger.error("Backup failed, aborting migration: %s", e)
                acc.errors.append(MigrationError("", f"Backup failed: {e}", "fatal"))
                return finish(MigrationState.ABORTED)

        self._enter(MigrationState.BATCH_PROCESSING)
        batches = _batches(records, config.batch_size)
        current = 0
        wrote = False
        try:
            for batch_number, batch in enumerate(batches, start=1):
                logger.info("Processing batch %d/%d (%d records)", batch_number, len(batches), len(batch))
                for record in batch:
                    if _is_cancelled(cancel):
                        acc.warnings.append(f"Migration cancelled after {current} of {total} records")
                        return finish(MigrationState.CANCELLED)

                    wrote = self._migrate_record(owner_id, record, config, acc) or wrote
                    current += 1
                    if progress_callback:
                        progress_callback(record.id, total, current)

                if batch_number < len(batches) and config.batch_delay and not config.dry_run:
                    time.sleep(config.batch_delay)
        except RepositoryError as e:
            logger.error("Repository failure, aborting migration: %s", e)
            acc.errors.append(MigrationError("", f"Repository failure: {e}", "fatal"))
            return finish(MigrationState.ABORTED)
        finally:
            if wrote and self.index is not None:
                self.index.invalidate()

        if config.validate_after_migration and not config.dry_run:
            self._enter(MigrationState.VALIDATING)
            self._validate_after(owner_id, records, acc)

        return finish(MigrationState.COMPLETED_WITH_ERRORS if acc.errors else MigrationState.COMPLETED)

    def _migrate_record(self, owner_id: str, record: TradeRecord, config: MigrationConfig, acc: _RunState) -> bool:
        """Migrate one record into `acc`. Returns True if the record was written."""
        try:
            fields = self.migration.plan(record)
            if not fields:
                acc.migrated += 1
                return False

            validation = self.migration.validate(record, fields)
            if not validation.is_valid:
                messages = ", ".join(issue.message for issue in validation.errors)
                if not config.skip_validation_errors:
                    raise RecordMigrationError(record.id, f"Validation failed: {messages}")
                acc.warnings.append(f"Record {record.id} has validation warnings: {messages}")

            if not config.dry_run and not self.repository.update(owner_id, record.id, fields):
                raise RecordMigrationError(record.id, "Repository rejected the update")

            acc.migrated += 1
            acc.converted += 1
            acc.converted_ids.append(record.id)
            acc.change_log.extend(self.migration.changes(record, fields))
            return not config.dry_run

        except RecordMigrationError as e:
            logger.warning("Record %s failed: %s", record.id, e.message)
            acc.fail(record.id, e.message)
        except RepositoryError:
            raise
        except Exception as e:
            logger.exception("Unexpected error migrating record %s", record.id)
            acc.fail(record.id, f"Migration failed: {e}")
        return False

    def _create_backup(self, owner_id: str, records: List[TradeRecord]) -> RollbackSnapshot:
        snapshot = RollbackSnapshot(
            owner_id=owner_id,
            migration=self.migration.name,
            created_at=datetime.now().isoformat(),
            records=tuple(record.to_dict() for record in records),
        )
        if self.backup_store is not None:
            self.backup_store.save(self.backup_key(owner_id), snapshot.to_dict())
            logger.info("Backed up %d records to %s", len(records), self.backup_key(owner_id))
        return snapshot

    def _validate_after(self, owner_id: str, records: List[TradeRecord], acc: _RunState):
        """Re-read the repository and turn discrepancies into warnings."""
        try:
            stored = self.repository.list(owner_id)
        except RepositoryError as e:
            self._mismatch(acc, f"Post-migration validation skipped: {e}")
            return

        # `records` may be any subset of the owner's records
        by_id = {record.id: record for record in stored}
        converted = set(acc.converted_ids)
        for source in records:
            record = by_id.get(source.id)
            if record is None:
                self._mismatch(acc, f"Record {source.id} missing after migration")
                continue
            if source.id not in converted:
                continue
            missing = [name for name in self.migration.required_fields if record.get(name) is None]
            if missing:
                self._mismatch(acc, f"Record {source.id} missing required fields: {', '.join(missing)}")
            elif not self.migration.validate(record, {}).is_valid:
                self._mismatch(acc, f"Record {source.id} failed validation after migration")

    @staticmethod
    def _mismatch(acc: _RunState, message: str):
        logger.warning(message)
        warnings.warn(message, ValidationMismatchWarning, stacklevel=3)
        acc.warnings.append(message)

    def load_backup(self, owner_id: str) -> Optional[RollbackSnapshot]:
        """Most recent snapshot saved for this owner and migration."""
        if self.backup_store is None:
            return None
        payload = self.backup_store.load(self.backup_key(owner_id))
        return RollbackSnapshot.from_dict(payload) if payload else None

    def rollback(self, owner_id: str, snapshot: Optional[RollbackSnapshot] = None) -> MigrationResult:
        """
        Overwrite every record with its pre-migration copy.

        Parameters
        ----
        owner_id : str
            Owner whose records are restored
        snapshot : RollbackSnapshot, optional
            Snapshot to apply. Loaded from the backup store if None.

        Raises
        ---
        TradeTagsError
            If no snapshot was given and none is stored
        """
        if snapshot is None:
            snapshot = self.load_backup(owner_id)
        if snapshot is None:
            raise TradeTagsError(f"No backup found for {self.backup_key(owner_id)}")

        started_at = datetime.now()
        acc = _RunState()
        state = MigrationState.COMPLETED
        logger.info("Rolling back %d records for %s", len(snapshot.records), owner_id)

        try:
            for data in snapshot.records:
                record_id = str(data.get("id", ""))
                try:
                    fields = {k: v for k, v in data.items() if k != "id"}
                    if not self.repository.update(owner_id, record_id, fields):
                        raise RecordMigrationError(record_id, "Record not found during rollback")
                    acc.migrated += 1
                except RecordMigrationError as e:
                    logger.warning("Rollback of %s failed: %s", record_id, e.message)
                    acc.fail(record_id, e.message)
                except RepositoryError:
                    raise
                except Exception as e:
                    logger.exception("Unexpected error restoring record %s", record_id)
                    acc.fail(record_id, f"Rollback failed: {e}")
        except RepositoryError as e:
            logger.error("Repository failure, aborting rollback: %s", e)
            acc.errors.append(MigrationError("", f"Repository failure: {e}", "fatal"))
            state = MigrationState.ABORTED
        finally:
            if acc.migrated and self.index is not None:
                self.index.invalidate()

        if state != MigrationState.ABORTED and acc.errors:
            state = MigrationState.COMPLETED_WITH_ERRORS

        return MigrationResult(
            migration=self.migration.name,
            state=state,
            total_records=len(snapshot.records),
            migrated_count=acc.migrated,
            failed_count=acc.failed,
            errors=tuple(acc.errors),
            started_at=started_at,
            finished_at=datetime.now(),
        )

    def history(self, owner_id: str) -> List[Dict[str, Any]]:
        """Summaries of past runs for this owner, oldest first."""
        if self.backup_store is None:
            return []
        payload = self.backup_store.load(self.history_key(owner_id))
        return list(payload.get("runs", [])) if payload else []

    def _record_history(self, owner_id: str, result: MigrationResult):
        if self.backup_store is None:
            return
        entry = {
            "migration": result.migration,
            "description": self.migration.description,
            "state": result.state.value,
            "total_records": result.total_records,
            "migrated_count": result.migrated_count,
            "failed_count": result.failed_count,
            "converted_count": result.converted_count,
            "started_at": result.started_at.isoformat() if result.started_at else None,
            "finished_at": result.finished_at.isoformat() if result.finished_at else None,
        }
        try:
            runs = self.history(owner_id)
            runs.append(entry)
            self.backup_store.save(self.history_key(owner_id), {"runs": runs[-MAX_HISTORY_ENTRIES:]})
        except RepositoryError as e:
            logger.warning("Could not record migration history: %s", e)


def _coerce_config(config: Union[MigrationConfig, Dict[str, Any], None]) -> MigrationConfig:
    if config is None:
        return MigrationConfig()
    if isinstance(config, dict):
        return MigrationConfig.from_dict(config)
    return config


def run_migration(
    owner_id: str,
    records: Iterable[TradeRecord],
    config: Union[MigrationConfig, Dict[str, Any], None] = None,
    repository: Optional[RecordRepository] = None,
    backup_store: Optional[BackupStore] = None,
    index: Optional[TagIndex] = None,
    progress_callback: Optional[ProgressCallback] = None,
    cancel: Optional[CancelFlag] = None,
) -> MigrationResult:
    """
    Run the tag migration over `records`.

    When no repository is given the default SQLite database is used as both
    record and backup store.
    """
    config = _coerce_config(config)
    if repository is None:
        with TradeDatabase() as db:
            pipeline = MigrationPipeline(db, backup_store or db, index=index)
            return pipeline.run(owner_id, records, config, progress_callback, cancel)

    pipeline = MigrationPipeline(repository, backup_store, index=index)
    return pipeline.run(owner_id, records, config, progress_callback, cancel)


def analyze_migration(records: Iterable[TradeRecord], default_tags: Sequence[str] = ()) -> MigrationReport:
    """Dry-run preview of the tag migration. Never writes."""
    pipeline = MigrationPipeline(repository=None, migration=TagMigration(default_tags))
    return pipeline.analyze(records)
