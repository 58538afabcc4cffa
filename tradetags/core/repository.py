"""
Collaborator interfaces for durable storage.

``RecordRepository`` is the authoritative trade record store and
``BackupStore`` a key-value store for migration snapshots and history. The
in-memory implementations serve tests and hosts without persistence;
``tradetags.core.db.TradeDatabase`` implements both on SQLite.
"""
import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from tradetags.core.models import TradeRecord

logger = logging.getLogger(__name__)


class RecordRepository(ABC):
    """Authoritative store of trade records, partitioned by owner."""

    @abstractmethod
    def list(self, owner_id: str) -> List[TradeRecord]:
        """
        List every record of an owner.

        Raises
        ---
        RepositoryError
            If the store is unreachable
        """

    @abstractmethod
    def update(self, owner_id: str, record_id: str, fields: Dict[str, Any]) -> bool:
        """
        Overwrite the given fields of one record.

        Returns
        ----
        bool
            False if the record does not exist or the write was rejected

        Raises
        ---
        RepositoryError
            If the store is unreachable
        """


class BackupStore(ABC):
    """Durable key-value store used for migration snapshots."""

    @abstractmethod
    def save(self, key: str, payload: Dict[str, Any]) -> None:
        """Store `payload` under `key`, replacing any previous value."""

    @abstractmethod
    def load(self, key: str) -> Optional[Dict[str, Any]]:
        """Payload stored under `key`, or None if absent."""


class InMemoryRecordRepository(RecordRepository):
    """Record repository holding plain dictionaries in memory."""

    def __init__(self, records: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self._records: Dict[str, Dict[str, Dict[str, Any]]] = {}
        for owner_id, owner_records in (records or {}).items():
            for data in owner_records:
                self.add(owner_id, data)

    def add(self, owner_id: str, record: Any) -> None:
        """Insert or replace a record (TradeRecord or dict)."""
        data = record.to_dict() if isinstance(record, TradeRecord) else dict(record)
        self._records.setdefault(owner_id, {})[str(data["id"])] = copy.deepcopy(data)

    def raw(self, owner_id: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Stored dictionary for a record, bypassing parsing."""
        data = self._records.get(owner_id, {}).get(record_id)
        return copy.deepcopy(data) if data is not None else None

    def list(self, owner_id: str) -> List[TradeRecord]:
        return [
            TradeRecord.from_dict(copy.deepcopy(data))
            for data in self._records.get(owner_id, {}).values()
        ]

    def update(self, owner_id: str, record_id: str, fields: Dict[str, Any]) -> bool:
        stored = self._records.get(owner_id, {}).get(record_id)
        if stored is None:
            logger.warning("Record %s not found for owner %s", record_id, owner_id)
            return False
        stored.update(copy.deepcopy(fields))
        return True


class InMemoryBackupStore(BackupStore):
    """Backup store holding deep copies of payloads in a dict."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}

    def save(self, key: str, payload: Dict[str, Any]) -> None:
        self._data[key] = copy.deepcopy(payload)

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        payload = self._data.get(key)
        return copy.deepcopy(payload) if payload is not None else None

    def keys(self) -> List[str]:
        return sorted(self._data)
