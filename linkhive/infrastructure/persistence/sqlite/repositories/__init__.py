"""SQLite repository adapters.

This package contains adapters that implement the sync engine's persistence
ports using SQLite/Peewee.
"""

from linkhive.infrastructure.persistence.sqlite.repositories.cache_repository import (
    SqliteLocalCacheStore,
    pending_key,
    snapshot_key,
)

__all__ = ["SqliteLocalCacheStore", "pending_key", "snapshot_key"]
