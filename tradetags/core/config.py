"""
Configuration and path resolution for trade tags.

Centralizes OS-specific data paths, environment overrides and loading of
migration options from JSON files.
"""
import json
import logging
import os
import platform
from pathlib import Path
from typing import Optional, Union

from tradetags.core.models import MigrationConfig

logger = logging.getLogger(__name__)

DEFAULT_INDEX_TTL = 5 * 60  # seconds

DB_PATH_ENV = "TRADETAGS_DB_PATH"
INDEX_TTL_ENV = "TRADETAGS_INDEX_TTL"


def get_data_dir() -> Path:
    """
    Get the OS-specific data directory.

    Returns
    ----
    Path
        Directory holding the default database (created if missing)
    """
    system = platform.system()
    home = Path.home()

    if system == 'Darwin':  # macOS
        base_dir = home / "Library" / "Application Support" / "trade-tags"
    elif system == 'Windows':
        base_dir = home / "AppData" / "Roaming" / "trade-tags"
    elif system == 'Linux':
        base_dir = home / ".local" / "share" / "trade-tags"
    else:
        base_dir = home / ".trade-tags"

    base_dir.mkdir(parents=True, exist_ok=True)
    return base_dir


def get_default_db_path() -> Path:
    """
    Get the default database path.

    TRADETAGS_DB_PATH takes precedence over the OS-specific location.
    """
    override = os.environ.get(DB_PATH_ENV)
    if override:
        return Path(override)
    return get_data_dir() / "trades.db"


def get_index_ttl() -> float:
    """Tag index staleness TTL in seconds (TRADETAGS_INDEX_TTL, default 300)."""
    raw = os.environ.get(INDEX_TTL_ENV)
    if raw is None:
        return float(DEFAULT_INDEX_TTL)
    try:
        ttl = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", INDEX_TTL_ENV, raw)
        return float(DEFAULT_INDEX_TTL)
    if ttl < 0:
        logger.warning("Ignoring negative %s=%r", INDEX_TTL_ENV, raw)
        return float(DEFAULT_INDEX_TTL)
    return ttl


def load_migration_config(path: Optional[Union[str, Path]] = None) -> MigrationConfig:
    """
    Load migration options from a JSON file.

    Parameters
    ----
    path : str or Path, optional
        JSON file with MigrationConfig keys (snake_case or camelCase).
        If None, returns the defaults.

    Returns
    ----
    MigrationConfig

    Raises
    ---
    ValueError
        If the file holds unknown keys or invalid values
    """
    if path is None:
        return MigrationConfig()

    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Migration config in {path} must be a JSON object")
    return MigrationConfig.from_dict(data)
