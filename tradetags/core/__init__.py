"""
Core domain models, tag normalization, the tag index and storage.
"""

from tradetags.core.config import (
    get_default_db_path,
    get_index_ttl,
    load_migration_config,
)

__all__ = [
    "get_default_db_path",
    "get_index_ttl",
    "load_migration_config",
]
