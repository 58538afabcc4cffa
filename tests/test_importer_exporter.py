"""
Tests for record import and tag statistics export.
"""
import json

import pandas as pd
import pytest

from tradetags.core.db import TradeDatabase
from tradetags.services.analytics import TagAnalyticsEngine
from tradetags.services.exporter import TagExporter, entries_to_dataframe
from tradetags.services.importer import RecordImporter, read_records_csv


@pytest.fixture
def db(tmp_path):
    database = TradeDatabase(tmp_path / "trades.db")
    yield database
    database.close()


@pytest.fixture
def csv_file(tmp_path):
    path = tmp_path / "trades.csv"
    path.write_text(
        "id,date,tags,pnl,status,instrument\n"
        't1,2024-01-02,"Scalp,London",100,closed,EURUSD\n'
        't2,2024-01-03,"[""#swing""]",-20,closed,\n'
        "t3,,,,open,GBPUSD\n"
    )
    return path


class TestImporter:
    """JSON and CSV import into the database."""

    def test_read_csv(self, csv_file):
        rows = read_records_csv(csv_file)
        assert rows[0]["tags"] == "Scalp,London"
        assert rows[1]["tags"] == ["#swing"]
        assert rows[1]["instrument"] is None
        assert rows[2]["date"] is None

    def test_import_csv(self, db, csv_file):
        count = RecordImporter(db).import_file(csv_file, "alice")

        assert count == 3
        record = db.get_record("alice", "t1")
        assert record.pnl == 100
        assert record.tags == "Scalp,London"
        assert db.get_record("alice", "t3").date is None

    def test_import_json(self, db, tmp_path):
        path = tmp_path / "trades.json"
        path.write_text(json.dumps({"records": [
            {"id": "j1", "tags": ["#a"], "pnl": 5, "status": "closed"},
            {"tags": ["#no_id"]},
        ]}))

        count = RecordImporter(db).import_file(path, "alice")

        assert count == 1
        assert db.get_record("alice", "j1").tags == ["#a"]

    def test_missing_or_invalid_file(self, db, tmp_path):
        importer = RecordImporter(db)
        assert importer.import_file(tmp_path / "missing.json", "alice") == 0

        broken = tmp_path / "broken.json"
        broken.write_text("{not json")
        assert importer.import_file(broken, "alice") == 0

    def test_import_directory(self, db, tmp_path, csv_file):
        (tmp_path / "more.json").write_text(json.dumps([{"id": "j1", "tags": []}]))
        (tmp_path / "notes.txt").write_text("ignored")

        stats = RecordImporter(db).import_directory(tmp_path, "alice")

        assert stats == {"files": 2, "records": 4, "errors": 0}


class TestExporter:
    """CSV and JSON export of tag statistics."""

    @pytest.fixture
    def records(self, db, csv_file):
        RecordImporter(db).import_file(csv_file, "alice")
        return db.list("alice")

    def test_dataframe(self, records):
        entries = TagAnalyticsEngine().most_used(records)
        df = entries_to_dataframe(entries)
        assert list(df["tag"]) == ["#london", "#scalp", "#swing"]
        assert df.loc[df["tag"] == "#scalp", "win_rate"].iloc[0] == 100

    def test_export_csv(self, records, tmp_path):
        engine = TagAnalyticsEngine()
        output = TagExporter().export(engine.most_used(records), engine.analytics(records), tmp_path / "out" / "tags.csv")

        df = pd.read_csv(output)
        assert len(df) == 3
        assert "profit_factor" in df.columns

    def test_export_json(self, records, tmp_path):
        engine = TagAnalyticsEngine()
        output = TagExporter().export_json(engine.analytics(records), tmp_path / "tags.json")

        data = json.loads(output.read_text())
        assert data["total_tags"] == 3
        assert data["most_used_tags"][0]["tag"] == "#london"
