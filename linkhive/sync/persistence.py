"""Best-effort persistence of sync state to the local cache."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError as PydanticValidationError

from linkhive.domain.exceptions import StorageError

if TYPE_CHECKING:
    from linkhive.sync.protocols import LocalCacheStore
    from linkhive.sync.state import SyncState

logger = logging.getLogger(__name__)


class StatePersister:
    """Writes snapshots and pending logs for one (user, kind) pair.

    Writes are serialized and always take the state as it is when the write
    begins, so the cache converges on the latest in-memory state. Storage
    failures are logged and recorded on the state without interrupting the
    caller.
    """

    def __init__(self, user_id: str, state: SyncState, cache: LocalCacheStore) -> None:
        self._user_id = user_id
        self._state = state
        self._cache = cache
        self._snapshot_lock = asyncio.Lock()
        self._pending_lock = asyncio.Lock()

    async def save_snapshot(self) -> bool:
        async with self._snapshot_lock:
            snapshot = self._state.snapshot()
            try:
                await self._cache.save(self._user_id, self._state.entity_kind, snapshot)
            except StorageError as exc:
                self._record_storage_error(exc, "save_snapshot")
                return False
        return True

    async def save_pending(self) -> bool:
        async with self._pending_lock:
            operations = list(self._state.pending_operations)
            try:
                await self._cache.save_pending(
                    self._user_id, self._state.entity_kind, operations
                )
            except StorageError as exc:
                self._record_storage_error(exc, "save_pending")
                return False
        return True

    async def hydrate(self) -> None:
        """Load the cached snapshot and pending log into memory."""
        kind = self._state.entity_kind
        try:
            snapshot = await self._cache.load(self._user_id, kind)
        except StorageError as exc:
            self._record_storage_error(exc, "load_snapshot")
            snapshot = None
        if snapshot is not None:
            try:
                self._state.restore(snapshot)
            except PydanticValidationError:
                self._record_storage_error(
                    StorageError("Cached entities failed validation"), "restore_snapshot"
                )

        try:
            operations = await self._cache.load_pending(self._user_id, kind)
        except StorageError as exc:
            self._record_storage_error(exc, "load_pending")
            operations = []
        self._state.pending_operations = sorted(operations, key=lambda op: op.id)

        logger.info(
            "sync_state_hydrated",
            extra={
                "user_id": self._user_id,
                "entity_kind": kind.value,
                "entities": len(self._state.entities),
                "pending_operations": len(self._state.pending_operations),
            },
        )

    def _record_storage_error(self, exc: StorageError, operation: str) -> None:
        logger.warning(
            "local_cache_failed",
            extra={
                "user_id": self._user_id,
                "entity_kind": self._state.entity_kind.value,
                "operation": operation,
                "error": exc.message,
            },
        )
        # Do not mask a remote failure the user has not seen yet
        if self._state.last_error is None:
            self._state.record_error(exc)
