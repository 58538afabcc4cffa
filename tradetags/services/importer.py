"""
Trade record importer.

Loads JSON or CSV exports of trade records into the trade database. Tags are
stored exactly as found in the file (lists, legacy comma-separated strings or
malformed values) so the tag migration can normalize them later.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from tradetags.core.db import TradeDatabase

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".json", ".csv")


def _clean_csv_value(name: str, value: str) -> Any:
    if value == "":
        return None
    if name == "tags" and value.lstrip().startswith("["):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


def read_records_csv(file_path: Path) -> List[Dict[str, Any]]:
    """
    Read trade records from a CSV file.

    Every column is read as text; empty cells become None. A `tags` cell may
    hold a JSON list or a comma-separated string.
    """
    df = pd.read_csv(file_path, dtype=str, keep_default_na=False)
    if "id" not in df.columns:
        raise ValueError(f"{file_path} has no 'id' column")
    return [
        {name: _clean_csv_value(name, value) for name, value in row.items()}
        for row in df.to_dict(orient="records")
    ]


def read_records_json(file_path: Path) -> List[Dict[str, Any]]:
    """Read trade records from a JSON list or an object with a `records` list."""
    with open(file_path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("records")
    if not isinstance(data, list):
        raise ValueError(f"{file_path} does not contain a list of records")
    return [item for item in data if isinstance(item, dict)]


class RecordImporter:
    """
    Imports trade record files into the database.
    """

    def __init__(self, db: TradeDatabase):
        """
        Initialize importer.

        Parameters
        ----
        db : TradeDatabase
            Database instance
        """
        self.db = db

    def import_file(self, file_path: Path, owner_id: str) -> int:
        """
        Import one JSON or CSV file.

        Parameters
        ----
        file_path : Path
            File to read
        owner_id : str
            Owner the records are stored under

        Returns
        ----
        int
            Number of records imported
        """
        file_path = Path(file_path)
        if not file_path.exists():
            logger.error("File not found: %s", file_path)
            return 0

        try:
            if file_path.suffix.lower() == ".csv":
                rows = read_records_csv(file_path)
            else:
                rows = read_records_json(file_path)
        except (OSError, ValueError) as e:
            logger.error("Failed to read/parse %s: %s", file_path, e)
            return 0

        imported_count = 0
        for row in rows:
            try:
                self.db.upsert_record(owner_id, row)
                imported_count += 1
            except ValueError as e:
                logger.error("Skipping record in %s: %s", file_path, e)

        logger.info("Imported %d records from %s", imported_count, file_path)
        return imported_count

    def import_directory(self, directory: Path, owner_id: str, pattern: Optional[str] = None) -> Dict[str, int]:
        """
        Import every supported file from a directory.

        Returns
        ----
        Dict[str, int]
            Statistics: {"files": count, "records": count, "errors": count}
        """
        directory = Path(directory)
        stats = {"files": 0, "records": 0, "errors": 0}
        if not directory.exists():
            logger.error("Directory not found: %s", directory)
            return stats

        if pattern:
            paths = sorted(directory.glob(pattern))
        else:
            paths = sorted(p for p in directory.iterdir() if p.suffix.lower() in SUPPORTED_SUFFIXES)

        for file_path in paths:
            count = self.import_file(file_path, owner_id)
            stats["files"] += 1
            stats["records"] += count
            if count == 0:
                stats["errors"] += 1

        logger.info("Import complete: %d files, %d records, %d errors",
                    stats["files"], stats["records"], stats["errors"])
        return stats
