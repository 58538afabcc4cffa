"""
CLI context and configuration management.

Provides shared context for Click commands with database lifecycle management.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import logging

from tradetags.core.db import TradeDatabase
from tradetags.core.config import get_default_db_path
from tradetags.tagger import TagManager

logger = logging.getLogger(__name__)


@dataclass
class CLIContext:
    """
    Shared context for CLI commands.

    Attributes:
        verbose: Enable verbose logging output
        db_path: Optional path to database file (uses OS-specific default if None)
        _db: Internal database connection (lazy-initialized)
    """
    verbose: bool = False
    db_path: Optional[Path] = None
    _db: Optional[TradeDatabase] = field(default=None, repr=False, init=False)

    def get_db(self) -> TradeDatabase:
        """
        Get or create database connection (lazy initialization).

        Returns:
            TradeDatabase instance
        """
        if self._db is None:
            path = self.db_path or get_default_db_path()
            if self.verbose:
                logger.info("Opening database: %s", path)
            self._db = TradeDatabase(path)
        return self._db

    def get_manager(self, owner_id: str) -> TagManager:
        """TagManager for one owner, backed by the database for records and backups."""
        db = self.get_db()
        return TagManager(db, owner_id, backup_store=db)

    def close(self):
        """
        Clean up resources (close database connection).

        Called automatically via Click's result_callback after command execution.
        """
        if self._db is not None:
            if self.verbose:
                logger.debug("Closing database connection")
            self._db.close()
            self._db = None
