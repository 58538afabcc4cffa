"""
Tests for bulk tag operations.
"""
import pytest

from tradetags.core.errors import TradeTagsError, ValidationError
from tradetags.core.models import (
    BulkOperationType, BulkTagOperation, MigrationConfig, MigrationState, TradeRecord,
)
from tradetags.core.repository import InMemoryBackupStore, InMemoryRecordRepository
from tradetags.services.bulk_operations import BulkTagMigration, BulkTagService, validate_operation
from tradetags.services.migration import MigrationPipeline
from tradetags.tagger import TagManager

OWNER = "trader-1"


def bulk_records():
    return [
        {"id": "1", "tags": ["#scalp", "#london"], "pnl": 10, "status": "closed"},
        {"id": "2", "tags": "Scalp, news", "pnl": -5, "status": "closed"},
        {"id": "3", "tags": ["#swing"], "pnl": 3, "status": "closed"},
        {"id": "4", "tags": 42},
    ]


def winning_records(count, tag="#a"):
    return [
        TradeRecord.from_dict({"id": str(i), "tags": [tag], "pnl": 10, "status": "closed"})
        for i in range(count)
    ]


def codes(issues):
    return [issue.code for issue in issues]


@pytest.fixture
def repository():
    return InMemoryRecordRepository({OWNER: bulk_records()})


@pytest.fixture
def backup_store():
    return InMemoryBackupStore()


@pytest.fixture
def service(repository, backup_store):
    return BulkTagService(repository, backup_store)


@pytest.fixture
def config():
    return MigrationConfig(batch_delay=0)


def rename(old, new):
    return BulkTagOperation(BulkOperationType.RENAME, [old], new)


class TestPlan:
    """Tag changes a single operation makes to one record."""

    def plan(self, operation, tags):
        return BulkTagMigration(operation).plan(TradeRecord.from_dict({"id": "x", "tags": tags}))

    def test_rename_keeps_position(self):
        assert self.plan(rename("#b", "#z"), ["#a", "#b", "#c"]) == {"tags": ["#a", "#z", "#c"]}

    def test_merge_appends_target(self):
        operation = BulkTagOperation("merge", ["#a", "#c"], "#z")
        assert self.plan(operation, ["#a", "#b", "#c"]) == {"tags": ["#b", "#z"]}

    def test_merge_into_existing_tag_deduplicates(self):
        operation = BulkTagOperation("merge", ["#a"], "#b")
        assert self.plan(operation, ["#a", "#b"]) == {"tags": ["#b"]}

    def test_replace_several_tags(self):
        operation = BulkTagOperation("replace", ["#a", "#c"], "#z")
        assert self.plan(operation, ["#a", "#b", "#c"]) == {"tags": ["#z", "#b"]}

    def test_delete(self):
        operation = BulkTagOperation("delete", ["A"])
        assert self.plan(operation, "a, b") == {"tags": ["#b"]}

    def test_record_without_selected_tag_is_untouched(self):
        assert self.plan(rename("#a", "#z"), "B, bad tag!") == {}
        assert self.plan(rename("#a", "#z"), 42) == {}
        assert self.plan(rename("#a", "#z"), None) == {}

    def test_rename_onto_itself_is_a_no_op(self):
        assert self.plan(rename("#a", "A"), ["#a", "#b"]) == {}

    def test_without_operation_nothing_changes(self):
        assert BulkTagMigration().plan(TradeRecord.from_dict({"id": "x", "tags": ["#a"]})) == {}


class TestValidateOperation:
    """Errors block an operation, warnings only flag it."""

    @pytest.fixture
    def records(self, repository):
        return repository.list(OWNER)

    def test_valid_rename(self, records):
        result = validate_operation(rename("scalp", "scalping"), records)
        assert result.is_valid
        assert result.errors == []
        assert result.warnings == []

    def test_no_valid_tags(self, records):
        result = validate_operation(BulkTagOperation("delete", ["!!!"]), records)
        assert not result.is_valid
        assert codes(result.errors) == ["BULK_NO_TAGS"]

    def test_target_required(self, records):
        result = validate_operation(BulkTagOperation("merge", ["#scalp"]), records)
        assert codes(result.errors) == ["BULK_TARGET_REQUIRED"]

    def test_invalid_target(self, records):
        result = validate_operation(rename("#scalp", "bad tag!"), records)
        assert codes(result.errors) == ["TAG_INVALID_CHARS"]
        assert result.errors[0].message.startswith("Target: ")

    def test_rename_takes_one_tag(self, records):
        operation = BulkTagOperation("rename", ["#scalp", "#swing"], "#style")
        assert codes(validate_operation(operation, records).errors) == ["BULK_RENAME_SINGLE_TAG"]

    def test_unused_tag_warning(self, records):
        result = validate_operation(BulkTagOperation("delete", ["#ghost"]), records)
        assert result.is_valid
        assert codes(result.warnings) == ["BULK_TAG_UNUSED"]
        assert result.warnings[0].message == "Tag #ghost is not used by any record"

    def test_no_records_warning(self):
        result = validate_operation(BulkTagOperation("delete", ["#a"]), [])
        assert codes(result.warnings) == ["BULK_NO_RECORDS", "BULK_TAG_UNUSED"]

    def test_high_usage_warning(self):
        result = validate_operation(rename("#a", "#b"), winning_records(21))
        assert codes(result.warnings) == ["BULK_HIGH_USAGE"]

    def test_deleting_a_winning_tag_warns(self):
        result = validate_operation(BulkTagOperation("delete", ["#a"]), winning_records(5))
        assert codes(result.warnings) == ["BULK_HIGH_WIN_RATE"]
        assert "100.0%" in result.warnings[0].message

    def test_win_rate_needs_enough_closed_trades(self):
        result = validate_operation(BulkTagOperation("delete", ["#a"]), winning_records(4))
        assert result.warnings == []

    def test_rename_onto_existing_tag_warns(self, records):
        result = validate_operation(rename("#scalp", "#swing"), records)
        assert result.is_valid
        assert codes(result.warnings) == ["BULK_TARGET_EXISTS"]


class TestService:
    """Execution through the migration pipeline."""

    def test_rename(self, service, repository, config):
        result = service.execute(OWNER, rename("scalp", "Scalping"), config=config)

        assert result.state == MigrationState.COMPLETED
        assert result.migration == "bulk_tags"
        assert result.converted_count == 2
        assert result.migrated_count == 4
        assert result.warnings == ()
        assert repository.raw(OWNER, "1")["tags"] == ["#scalping", "#london"]
        assert repository.raw(OWNER, "2")["tags"] == ["#scalping", "#news"]
        assert repository.raw(OWNER, "3")["tags"] == ["#swing"]
        assert repository.raw(OWNER, "4")["tags"] == 42

    def test_merge(self, service, repository, config):
        operation = BulkTagOperation(BulkOperationType.MERGE, ["#scalp", "#swing"], "#style")
        result = service.execute(OWNER, operation, config=config)

        assert result.converted_count == 3
        assert repository.raw(OWNER, "1")["tags"] == ["#london", "#style"]
        assert repository.raw(OWNER, "2")["tags"] == ["#news", "#style"]
        assert repository.raw(OWNER, "3")["tags"] == ["#style"]

    def test_delete(self, service, repository, config):
        service.execute(OWNER, BulkTagOperation("delete", ["news"]), config=config)
        assert repository.raw(OWNER, "2")["tags"] == ["#scalp"]
        assert repository.raw(OWNER, "1")["tags"] == ["#scalp", "#london"]

    def test_invalid_operation_writes_nothing(self, service, repository, backup_store, config):
        with pytest.raises(ValidationError) as excinfo:
            service.execute(OWNER, BulkTagOperation("rename", ["#scalp", "#swing"], "#x"), config=config)

        assert codes(excinfo.value.issues) == ["BULK_RENAME_SINGLE_TAG"]
        assert repository.raw(OWNER, "1")["tags"] == ["#scalp", "#london"]
        assert backup_store.load(f"{OWNER}:bulk_tags") is None

    def test_validation_warnings_lead_the_result_warnings(self, service, config):
        result = service.execute(OWNER, BulkTagOperation("delete", ["#scalp", "#ghost"]), config=config)
        assert result.state == MigrationState.COMPLETED
        assert result.warnings[0] == "Tag #ghost is not used by any record"

    def test_preview_writes_nothing(self, service, repository, backup_store):
        report = service.preview(OWNER, rename("#scalp", "#scalping"))

        assert report.records_needing_migration == 2
        assert report.get("1").changes[0].new_value == ["#scalping", "#london"]
        assert not report.get("3").needs_migration
        assert repository.raw(OWNER, "1")["tags"] == ["#scalp", "#london"]
        assert backup_store.load(f"{OWNER}:bulk_tags") is None


class TestUndoAndHistory:
    """Backups and history are kept apart from the tag migration."""

    def test_rollback_last_restores_records(self, service, repository, config):
        service.execute(OWNER, rename("#scalp", "#scalping"), config=config)
        result = service.rollback_last(OWNER)

        assert result.state == MigrationState.COMPLETED
        assert result.migrated_count == 4
        assert repository.raw(OWNER, "1")["tags"] == ["#scalp", "#london"]
        assert repository.raw(OWNER, "2")["tags"] == "Scalp, news"

    def test_rollback_without_operation(self, service):
        with pytest.raises(TradeTagsError):
            service.rollback_last(OWNER)

    def test_backup_key(self, service, repository, backup_store, config):
        service.execute(OWNER, BulkTagOperation("delete", ["#news"]), config=config)
        assert backup_store.load(f"{OWNER}:bulk_tags") is not None
        assert backup_store.load(f"{OWNER}:tags") is None

    def test_history_describes_each_operation(self, service, repository, backup_store, config):
        service.execute(OWNER, rename("#scalp", "#scalping"), config=config)
        service.execute(OWNER, BulkTagOperation("delete", ["#news"]), config=config)

        runs = service.history(OWNER)
        assert [run["description"] for run in runs] == ["rename #scalp -> #scalping", "delete #news"]
        assert runs[0]["converted_count"] == 2
        assert MigrationPipeline(repository, backup_store).history(OWNER) == []


class TestTagManager:
    """Bulk operations and queries through the manager."""

    def test_rename_then_undo(self, repository, backup_store):
        manager = TagManager(repository, OWNER, backup_store)
        assert "#scalp" in [entry.tag for entry in manager.most_used()]

        manager.bulk_operation(rename("#scalp", "#scalping"), MigrationConfig(batch_delay=0))
        tags = [entry.tag for entry in manager.most_used()]
        assert "#scalping" in tags
        assert "#scalp" not in tags
        assert [r.id for r in manager.search_records("#scalping AND NOT #news")] == ["1"]

        manager.undo_bulk_operation()
        assert [r.id for r in manager.search_records("#scalp")] == ["1", "2"]
