"""
Tests for the SQLite trade database.
"""
import os
import tempfile

import pytest

from tradetags.core.config import get_default_db_path, load_migration_config
from tradetags.core.db import TradeDatabase
from tradetags.core.models import MigrationState, TradeRecord, TradeStatus
from tradetags.services.migration import MigrationPipeline


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    fd, path = tempfile.mkstemp(suffix='.db')
    os.close(fd)
    db = TradeDatabase(path)
    yield db
    db.close()
    os.unlink(path)


def test_upsert_and_get_record(temp_db):
    """Records round-trip through the database."""
    temp_db.upsert_record("alice", {
        "id": "t1",
        "date": "2024-03-01",
        "tags": ["#scalp"],
        "pnl": 12.5,
        "status": "closed",
        "instrument": "EURUSD",
        "notes": "early exit",
    })

    record = temp_db.get_record("alice", "t1")
    assert record.tags == ["#scalp"]
    assert record.pnl == 12.5
    assert record.status == TradeStatus.CLOSED
    assert record.instrument == "EURUSD"
    assert record.extra == {"notes": "early exit"}
    assert temp_db.get_record("alice", "missing") is None


def test_malformed_tags_survive(temp_db):
    """Legacy tag values are stored unchanged."""
    temp_db.upsert_record("alice", {"id": "t1", "tags": "a,b"})
    temp_db.upsert_record("alice", {"id": "t2", "tags": 123})

    assert temp_db.get_record("alice", "t1").tags == "a,b"
    assert temp_db.get_record("alice", "t2").tags == 123


def test_records_are_partitioned_by_owner(temp_db):
    temp_db.upsert_record("alice", TradeRecord(id="t1", tags=["#a"]))
    temp_db.upsert_record("bob", TradeRecord(id="t1", tags=["#b"]))

    assert [r.tags for r in temp_db.list("alice")] == [["#a"]]
    assert temp_db.count_records("bob") == 1


def test_record_id_required(temp_db):
    with pytest.raises(ValueError):
        temp_db.upsert_record("alice", {"tags": ["#a"]})


def test_update(temp_db):
    """Partial updates merge unknown fields into extra."""
    temp_db.upsert_record("alice", {"id": "t1", "tags": "a", "pnl": 5})

    assert temp_db.update("alice", "t1", {"tags": ["#a"], "reviewed": True})
    record = temp_db.get_record("alice", "t1")
    assert record.tags == ["#a"]
    assert record.pnl == 5
    assert record.extra == {"reviewed": True}

    assert not temp_db.update("alice", "missing", {"tags": []})


def test_backup_store(temp_db):
    temp_db.save("alice:tags", {"records": [{"id": "t1"}]})
    assert temp_db.load("alice:tags") == {"records": [{"id": "t1"}]}
    assert temp_db.load("bob:tags") is None


def test_migration_and_rollback_on_sqlite(temp_db):
    """Full migration cycle against the database."""
    temp_db.upsert_record("alice", {"id": "t1", "tags": "Scalp,News", "status": "closed", "pnl": 3})
    temp_db.upsert_record("alice", {"id": "t2", "tags": {"bad": True}})
    pipeline = MigrationPipeline(temp_db, temp_db)

    result = pipeline.run("alice")
    assert result.state == MigrationState.COMPLETED_WITH_ERRORS
    assert temp_db.get_record("alice", "t1").tags == ["#scalp", "#news"]

    rollback = pipeline.rollback("alice")
    assert rollback.state == MigrationState.COMPLETED
    assert temp_db.get_record("alice", "t1").tags == "Scalp,News"
    assert len(pipeline.history("alice")) == 1


def test_default_db_path_env(monkeypatch, tmp_path):
    monkeypatch.setenv("TRADETAGS_DB_PATH", str(tmp_path / "custom.db"))
    assert get_default_db_path() == tmp_path / "custom.db"


def test_load_migration_config(tmp_path):
    path = tmp_path / "migration.json"
    path.write_text('{"batchSize": 25, "dry_run": true}')

    config = load_migration_config(path)
    assert config.batch_size == 25
    assert config.dry_run
    assert config.backup_before_migration
    assert load_migration_config().batch_size == 100
