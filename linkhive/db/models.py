"""Peewee ORM models for the local cache database."""

from __future__ import annotations

from typing import Any

import peewee
from playhouse.sqlite_ext import JSONField

from linkhive.core.time_utils import utc_now

# A proxy that will be initialised with the concrete database instance at runtime.
database_proxy: peewee.Database = peewee.DatabaseProxy()

NAMESPACE_SNAPSHOT = "snapshot"
NAMESPACE_PENDING = "pending_operations"


class BaseModel(peewee.Model):
    """Base Peewee model bound to the lazily initialised database proxy."""

    def save(self, *args: Any, **kwargs: Any) -> int:
        if hasattr(self, "updated_at"):
            self.updated_at = utc_now()
        return super().save(*args, **kwargs)

    class Meta:
        database = database_proxy
        legacy_table_names = False


class CacheEntry(BaseModel):
    """One durable value per (user, entity kind, namespace).

    ``cache_key`` is the namespaced string key, e.g. ``links:<user_id>`` for a
    snapshot or ``pending_operations:links:<user_id>`` for the pending log.
    """

    id = peewee.AutoField()
    cache_key = peewee.TextField(unique=True)
    user_id = peewee.TextField(index=True)
    entity_kind = peewee.TextField()
    namespace = peewee.TextField()
    payload = JSONField()
    updated_at = peewee.DateTimeField(default=utc_now)

    class Meta:
        table_name = "cache_entries"


ALL_MODELS: tuple[type[BaseModel], ...] = (CacheEntry,)

