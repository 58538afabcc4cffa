"""
Database layer for trade records and migration backups.

Provides a SQLite store implementing both RecordRepository and BackupStore.
"""
import sqlite3
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from tradetags.core.config import get_default_db_path
from tradetags.core.errors import RepositoryError
from tradetags.core.models import TradeRecord
from tradetags.core.repository import BackupStore, RecordRepository

logger = logging.getLogger(__name__)

# Columns stored directly; tags and any unknown fields are JSON-encoded
_COLUMNS = ("date", "pnl", "status", "instrument", "strategy", "side")


class TradeDatabase(RecordRepository, BackupStore):
    """
    SQLite database for trade records and migration snapshots.

    Records are partitioned by owner. The raw `tags` value is stored as JSON
    so malformed legacy values survive a round trip unchanged.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        """
        Initialize database connection.

        Parameters
        ----
        db_path : str or Path, optional
            Path to database file. If None, uses the default location.
        """
        if db_path is None:
            db_path = get_default_db_path()

        self.db_path = str(db_path)
        self.conn = None
        self._ensure_schema()

    def _ensure_schema(self):
        """Create database schema if it doesn't exist."""
        try:
            self.conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise RepositoryError(f"Cannot open database {self.db_path}: {e}") from e
        self.conn.row_factory = sqlite3.Row

        cursor = self.conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.fetchone()  # Consume the result

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS trades (
                owner_id TEXT NOT NULL,
                id TEXT NOT NULL,
                date TEXT,
                tags TEXT,
                pnl REAL,
                status TEXT DEFAULT 'open',
                instrument TEXT,
                strategy TEXT,
                side TEXT,
                extra TEXT,
                updated_at TEXT,
                PRIMARY KEY (owner_id, id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS backups (
                key TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                saved_at TEXT NOT NULL
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_trades_owner ON trades(owner_id)")
        self.conn.commit()

    def _row_to_record(self, row: sqlite3.Row) -> TradeRecord:
        data: Dict[str, Any] = {"id": row["id"]}
        for column in _COLUMNS:
            data[column] = row[column]
        data["tags"] = json.loads(row["tags"]) if row["tags"] is not None else None
        if row["extra"]:
            data.update(json.loads(row["extra"]))
        return TradeRecord.from_dict(data)

    def _split_fields(self, fields: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
        """Map record fields to column values; unknown fields are merged into `extra`."""
        columns: Dict[str, Any] = {}
        for name, value in fields.items():
            if name == "id":
                continue
            if name == "tags":
                columns["tags"] = json.dumps(value)
            elif name in _COLUMNS:
                columns[name] = value
            else:
                extra[name] = value
        return columns

    def upsert_record(self, owner_id: str, record: Union[TradeRecord, Dict[str, Any]]) -> None:
        """
        Insert or replace a record.

        Parameters
        ----
        owner_id : str
            Owning account
        record : TradeRecord or dict
            Record to store
        """
        data = record.to_dict() if isinstance(record, TradeRecord) else dict(record)
        if data.get("id") in (None, ""):
            raise ValueError("Record id is required")

        extra: Dict[str, Any] = {}
        columns = self._split_fields(data, extra)
        columns.setdefault("tags", json.dumps(data.get("tags")))

        try:
            self.conn.execute(
                """
                INSERT OR REPLACE INTO trades
                    (owner_id, id, date, tags, pnl, status, instrument, strategy, side, extra, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    owner_id,
                    str(data["id"]),
                    columns.get("date"),
                    columns["tags"],
                    columns.get("pnl"),
                    columns.get("status") or "open",
                    columns.get("instrument"),
                    columns.get("strategy"),
                    columns.get("side"),
                    json.dumps(extra) if extra else None,
                    datetime.now().isoformat(),
                ),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to store record {data['id']}: {e}") from e

    def get_record(self, owner_id: str, record_id: str) -> Optional[TradeRecord]:
        """Fetch a single record, or None if not found."""
        try:
            row = self.conn.execute(
                "SELECT * FROM trades WHERE owner_id = ? AND id = ?",
                (owner_id, record_id),
            ).fetchone()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to read record {record_id}: {e}") from e
        return self._row_to_record(row) if row else None

    def list(self, owner_id: str) -> List[TradeRecord]:
        try:
            rows = self.conn.execute(
                "SELECT * FROM trades WHERE owner_id = ? ORDER BY date, id",
                (owner_id,),
            ).fetchall()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to list records for {owner_id}: {e}") from e
        return [self._row_to_record(row) for row in rows]

    def update(self, owner_id: str, record_id: str, fields: Dict[str, Any]) -> bool:
        try:
            row = self.conn.execute(
                "SELECT extra FROM trades WHERE owner_id = ? AND id = ?",
                (owner_id, record_id),
            ).fetchone()
            if row is None:
                logger.warning("Record %s not found for owner %s", record_id, owner_id)
                return False

            extra = json.loads(row["extra"]) if row["extra"] else {}
            columns = self._split_fields(fields, extra)
            columns["extra"] = json.dumps(extra) if extra else None
            columns["updated_at"] = datetime.now().isoformat()

            assignments = ", ".join(f"{name} = ?" for name in columns)
            self.conn.execute(
                f"UPDATE trades SET {assignments} WHERE owner_id = ? AND id = ?",
                (*columns.values(), owner_id, record_id),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to update record {record_id}: {e}") from e
        return True

    def count_records(self, owner_id: str) -> int:
        """Number of records stored for an owner."""
        try:
            row = self.conn.execute(
                "SELECT COUNT(*) FROM trades WHERE owner_id = ?", (owner_id,)
            ).fetchone()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to count records for {owner_id}: {e}") from e
        return row[0]

    def save(self, key: str, payload: Dict[str, Any]) -> None:
        try:
            self.conn.execute(
                "INSERT OR REPLACE INTO backups (key, payload, saved_at) VALUES (?, ?, ?)",
                (key, json.dumps(payload), datetime.now().isoformat()),
            )
            self.conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise RepositoryError(f"Failed to save backup {key}: {e}") from e
        logger.debug("Saved backup %s", key)

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            row = self.conn.execute(
                "SELECT payload FROM backups WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to load backup {key}: {e}") from e
        return json.loads(row["payload"]) if row else None

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
