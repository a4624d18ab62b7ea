"""SQLite implementation of the local cache store.

Snapshots and pending-operation logs are stored as JSON documents in the
``cache_entries`` table, one row per namespaced key. Every write is a single
upsert inside a transaction, so readers only ever observe whole values.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import peewee
from pydantic import ValidationError as PydanticValidationError

from linkhive.core.time_utils import utc_now
from linkhive.db.models import NAMESPACE_PENDING, NAMESPACE_SNAPSHOT, CacheEntry
from linkhive.domain.exceptions import StorageError
from linkhive.domain.models import CacheSnapshot, EntityKind, PendingOperation

if TYPE_CHECKING:
    from collections.abc import Callable

    from linkhive.db.session import DatabaseSessionManager

logger = logging.getLogger(__name__)


def snapshot_key(user_id: str, entity_kind: EntityKind) -> str:
    return f"{EntityKind(entity_kind).value}:{user_id}"


def pending_key(user_id: str, entity_kind: EntityKind) -> str:
    return f"{NAMESPACE_PENDING}:{EntityKind(entity_kind).value}:{user_id}"


class SqliteLocalCacheStore:
    """Adapter persisting sync snapshots through the Peewee session manager."""

    def __init__(self, session_manager: DatabaseSessionManager) -> None:
        self._session = session_manager

    async def _execute(
        self, operation: Callable[[], Any], *, operation_name: str, read_only: bool = False
    ) -> Any:
        run = self._session.run_read if read_only else self._session.run_write
        try:
            return await run(operation, operation_name=operation_name)
        except (peewee.PeeweeException, OSError, TimeoutError) as exc:
            msg = f"Local cache {operation_name} failed: {exc}"
            raise StorageError(msg, {"operation": operation_name}) from exc

    async def _write(
        self,
        *,
        key: str,
        user_id: str,
        entity_kind: EntityKind,
        namespace: str,
        payload: Any,
        operation_name: str,
    ) -> None:
        def _upsert() -> None:
            CacheEntry.insert(
                cache_key=key,
                user_id=user_id,
                entity_kind=EntityKind(entity_kind).value,
                namespace=namespace,
                payload=payload,
                updated_at=utc_now(),
            ).on_conflict(
                conflict_target=[CacheEntry.cache_key],
                update={
                    CacheEntry.payload: peewee.EXCLUDED.payload,
                    CacheEntry.updated_at: peewee.EXCLUDED.updated_at,
                },
            ).execute()

        await self._execute(_upsert, operation_name=operation_name)

    async def _read(self, key: str, *, operation_name: str) -> Any | None:
        def _query() -> Any | None:
            entry = CacheEntry.get_or_none(CacheEntry.cache_key == key)
            return None if entry is None else entry.payload

        return await self._execute(_query, operation_name=operation_name, read_only=True)

    async def save(self, user_id: str, entity_kind: EntityKind, snapshot: CacheSnapshot) -> None:
        """Overwrite the stored snapshot for (user, kind) with the full ordered collection."""
        await self._write(
            key=snapshot_key(user_id, entity_kind),
            user_id=user_id,
            entity_kind=entity_kind,
            namespace=NAMESPACE_SNAPSHOT,
            payload=snapshot.model_dump(mode="json"),
            operation_name="cache_save",
        )
        logger.debug(
            "cache_snapshot_saved",
            extra={
                "user_id": user_id,
                "entity_kind": EntityKind(entity_kind).value,
                "count": len(snapshot.entities),
            },
        )

    async def load(self, user_id: str, entity_kind: EntityKind) -> CacheSnapshot | None:
        """Return the last saved snapshot, or None when nothing was cached yet."""
        payload = await self._read(snapshot_key(user_id, entity_kind), operation_name="cache_load")
        if payload is None:
            return None
        try:
            return CacheSnapshot.model_validate(payload)
        except PydanticValidationError as exc:
            msg = "Cached snapshot is corrupt"
            raise StorageError(msg, {"key": snapshot_key(user_id, entity_kind)}) from exc

    async def save_pending(
        self, user_id: str, entity_kind: EntityKind, operations: list[PendingOperation]
    ) -> None:
        await self._write(
            key=pending_key(user_id, entity_kind),
            user_id=user_id,
            entity_kind=entity_kind,
            namespace=NAMESPACE_PENDING,
            payload=[op.model_dump(mode="json") for op in operations],
            operation_name="cache_save_pending",
        )

    async def load_pending(self, user_id: str, entity_kind: EntityKind) -> list[PendingOperation]:
        payload = await self._read(
            pending_key(user_id, entity_kind), operation_name="cache_load_pending"
        )
        if not payload:
            return []
        try:
            return [PendingOperation.model_validate(item) for item in payload]
        except PydanticValidationError as exc:
            msg = "Cached pending-operation log is corrupt"
            raise StorageError(msg, {"key": pending_key(user_id, entity_kind)}) from exc

    async def clear(self, user_id: str) -> None:
        """Remove every snapshot and pending log belonging to ``user_id``."""

        def _delete() -> int:
            return CacheEntry.delete().where(CacheEntry.user_id == user_id).execute()

        removed = await self._execute(_delete, operation_name="cache_clear")
        logger.info("cache_cleared", extra={"user_id": user_id, "removed": removed})
