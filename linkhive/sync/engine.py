"""Offline-first sync engine facade.

One ``SyncEngine`` exists per signed-in user. It owns, for every entity kind,
the in-memory state, the refresh scheduler, the pending queue, the mutation
pipeline and the change listener, and exposes lifecycle hooks, queries and
commands to the UI layer.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from linkhive.config.sync import SyncEngineConfig
from linkhive.core.logging_utils import correlation_scope
from linkhive.core.time_utils import utc_now
from linkhive.domain.exceptions import (
    AuthError,
    StorageError,
    SyncError,
    ValidationError,
)
from linkhive.domain.models import EntityKind, Link, is_temporary_id
from linkhive.sync.merge import merge_remote_snapshot
from linkhive.sync.mutations import MutationPipeline, MutationResult
from linkhive.sync.pending_queue import PendingOperationQueue, ReplayResult
from linkhive.sync.persistence import StatePersister
from linkhive.sync.queries import filter_by_category, get_categories, search_links
from linkhive.sync.remote_gateway import RemoteGateway
from linkhive.sync.scheduler import RefreshDecision, SyncScheduler
from linkhive.sync.state import SyncState
from linkhive.sync.subscriptions import ChangeSubscriptionListener

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from linkhive.domain.exceptions import ErrorKind
    from linkhive.domain.models import PendingOperation, SyncEntity
    from linkhive.sync.protocols import LocalCacheStore, RemoteStore

logger = logging.getLogger(__name__)


@dataclass
class _KindRuntime:
    """Everything the engine keeps for one entity kind."""

    state: SyncState
    persister: StatePersister
    gateway: RemoteGateway
    queue: PendingOperationQueue
    scheduler: SyncScheduler
    pipeline: MutationPipeline
    listener: ChangeSubscriptionListener


class SyncEngine:
    """Keeps links and collections of one user in sync with the remote store."""

    def __init__(
        self,
        user_id: str,
        remote: RemoteStore,
        cache: LocalCacheStore,
        config: SyncEngineConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        on_auth_error: Callable[[AuthError], Any] | None = None,
    ) -> None:
        self.user_id = str(user_id)
        self._remote = remote
        self._cache = cache
        self._config = config or SyncEngineConfig()
        self._on_auth_error = on_auth_error
        self._operation_ids = itertools.count(1)
        self._started = False
        self._kinds: dict[EntityKind, _KindRuntime] = {
            kind: self._build_runtime(kind, clock) for kind in EntityKind
        }

    def _build_runtime(self, kind: EntityKind, clock: Callable[[], float]) -> _KindRuntime:
        state = SyncState(entity_kind=kind)
        persister = StatePersister(self.user_id, state, self._cache)
        gateway = RemoteGateway(
            self._remote, self.user_id, kind, timeout=self._config.remote_timeout_sec
        )
        queue = PendingOperationQueue(state, persister, next_id=self._next_operation_id)

        async def synchronize() -> None:
            await self._synchronize(kind)

        scheduler = SyncScheduler(
            state,
            synchronize,
            throttle_window=self._config.throttle_window_for(kind.value),
            debounce_window=self._config.debounce_window_for(kind.value),
            clock=clock,
        )

        async def forced_refresh() -> RefreshDecision:
            return await scheduler.request_refresh(force=True)

        pipeline = MutationPipeline(
            state,
            gateway,
            queue,
            persister,
            request_refresh=forced_refresh,
            on_auth_error=self._handle_auth_error,
        )
        listener = ChangeSubscriptionListener(self._remote, self.user_id, kind, scheduler)
        return _KindRuntime(state, persister, gateway, queue, scheduler, pipeline, listener)

    def _next_operation_id(self) -> int:
        return next(self._operation_ids)

    def _runtime(self, kind: EntityKind | str) -> _KindRuntime:
        return self._kinds[EntityKind(kind)]

    # ------------------------------------------------------------- lifecycle

    async def on_session_start(self) -> None:
        """Hydrate from the cache, subscribe, replay queued work, then refresh."""
        if self._started:
            return
        self._started = True
        for runtime in self._kinds.values():
            runtime.state.loading = True
            runtime.scheduler.reopen()

        await asyncio.gather(*(rt.persister.hydrate() for rt in self._kinds.values()))
        self._seed_operation_ids()
        logger.info("sync_session_started", extra={"user_id": self.user_id})
        await asyncio.gather(*(self._start_kind(rt) for rt in self._kinds.values()))

    async def _start_kind(self, runtime: _KindRuntime) -> None:
        try:
            runtime.listener.start()
            await runtime.queue.replay_all(runtime.pipeline)
            await runtime.scheduler.request_refresh(force=True)
        finally:
            runtime.state.loading = False

    def _seed_operation_ids(self) -> None:
        highest = max(
            (op.id for rt in self._kinds.values() for op in rt.state.pending_operations),
            default=0,
        )
        self._operation_ids = itertools.count(highest + 1)

    async def on_session_end(self) -> None:
        """Unsubscribe, cancel timers and wipe the user's cache and memory."""
        for runtime in self._kinds.values():
            runtime.listener.stop()
        await asyncio.gather(*(rt.scheduler.shutdown() for rt in self._kinds.values()))
        try:
            await self._cache.clear(self.user_id)
        except StorageError as exc:
            logger.warning(
                "sync_session_cache_clear_failed",
                extra={"user_id": self.user_id, "error": exc.message},
            )
        for runtime in self._kinds.values():
            runtime.pipeline.reset()
            runtime.state.reset()
        self._operation_ids = itertools.count(1)
        self._started = False
        logger.info("sync_session_ended", extra={"user_id": self.user_id})

    async def close(self) -> None:
        """Stop listeners and timers but keep the cache for the next start."""
        for runtime in self._kinds.values():
            runtime.listener.stop()
        await asyncio.gather(*(rt.scheduler.shutdown() for rt in self._kinds.values()))
        for runtime in self._kinds.values():
            runtime.pipeline.reset()
        self._started = False
        logger.info("sync_engine_closed", extra={"user_id": self.user_id})

    async def on_connectivity_restored(self) -> dict[EntityKind, ReplayResult]:
        """Replay queued operations, then ask for a refresh of each kind."""
        results: dict[EntityKind, ReplayResult] = {}
        for kind, runtime in self._kinds.items():
            results[kind] = await runtime.queue.replay_all(runtime.pipeline)
            runtime.scheduler.request_refresh_nowait()
        return results

    # ------------------------------------------------------------- queries

    def get_entities(self, kind: EntityKind | str) -> tuple[SyncEntity, ...]:
        return tuple(self._runtime(kind).state.entities)

    def is_loading(self, kind: EntityKind | str) -> bool:
        return self._runtime(kind).state.loading

    def is_syncing(self, kind: EntityKind | str) -> bool:
        return self._runtime(kind).state.sync_in_flight

    def last_error(self, kind: EntityKind | str) -> ErrorKind | None:
        return self._runtime(kind).state.last_error

    def last_error_message(self, kind: EntityKind | str) -> str | None:
        return self._runtime(kind).state.last_error_message

    def last_sync_timestamp(self, kind: EntityKind | str) -> datetime | None:
        return self._runtime(kind).state.last_sync_timestamp

    def pending_operations(self, kind: EntityKind | str) -> tuple[PendingOperation, ...]:
        return self._runtime(kind).queue.operations

    def search_links(self, query: str) -> list[Link]:
        return search_links(self._runtime(EntityKind.LINKS).state.entities, query)

    def filter_by_category(self, category: str | None) -> list[Link]:
        return filter_by_category(self._runtime(EntityKind.LINKS).state.entities, category)

    def get_categories(self) -> list[str]:
        return get_categories(self._runtime(EntityKind.LINKS).state.entities)

    # ------------------------------------------------------------- commands

    async def create(self, kind: EntityKind | str, attributes: dict[str, Any]) -> MutationResult:
        return await self._runtime(kind).pipeline.create(attributes)

    async def update(
        self, kind: EntityKind | str, entity_id: str, attributes: dict[str, Any]
    ) -> MutationResult:
        return await self._runtime(kind).pipeline.update(entity_id, attributes)

    async def delete(self, kind: EntityKind | str, entity_id: str) -> MutationResult:
        return await self._runtime(kind).pipeline.delete(entity_id)

    async def request_refresh(self, kind: EntityKind | str, force: bool = False) -> RefreshDecision:
        runtime = self._runtime(kind)
        if not force:
            return runtime.scheduler.request_refresh_nowait()
        runtime.state.loading = True
        try:
            return await runtime.scheduler.request_refresh(force=True)
        finally:
            runtime.state.loading = False

    async def add_link_to_collection(self, link_id: str, collection_id: str) -> MutationResult:
        return await self._change_membership("add", link_id, collection_id)

    async def remove_link_from_collection(
        self, link_id: str, collection_id: str
    ) -> MutationResult:
        return await self._change_membership("remove", link_id, collection_id)

    async def _change_membership(
        self, action: str, link_id: str, collection_id: str
    ) -> MutationResult:
        runtime = self._runtime(EntityKind.COLLECTIONS)
        runtime.state.clear_error()
        link_id = self._runtime(EntityKind.LINKS).state.resolve_id(link_id)
        collection_id = runtime.state.resolve_id(collection_id)
        if is_temporary_id(link_id) or is_temporary_id(collection_id):
            error = ValidationError(
                "Link and collection must be synced before changing membership",
                {"link_id": link_id, "collection_id": collection_id},
            )
            runtime.state.record_error(error)
            return MutationResult(error=error)

        remote = self._remote

        def factory() -> Awaitable[None]:
            if action == "add":
                return remote.add_link_to_collection(self.user_id, link_id, collection_id)
            return remote.remove_link_from_collection(link_id, collection_id)

        try:
            await runtime.gateway.call(f"{action}_link_collection", factory)
        except SyncError as error:
            runtime.state.record_error(error)
            if isinstance(error, AuthError):
                self._handle_auth_error(error)
            return MutationResult(error=error)

        await runtime.scheduler.request_refresh(force=True)
        return MutationResult(entity=runtime.state.find(collection_id))

    # ------------------------------------------------------------- sync

    async def _synchronize(self, kind: EntityKind) -> None:
        with correlation_scope() as correlation_id:
            await self._fetch_and_merge(kind, correlation_id)

    async def _fetch_and_merge(self, kind: EntityKind, correlation_id: str) -> None:
        """Fetch the full remote collection and merge it with local intent."""
        runtime = self._runtime(kind)
        state = runtime.state
        state.clear_error()
        fetch_seq = state.mutation_seq
        try:
            remote_entities = await runtime.gateway.fetch_all(correlation_id=correlation_id)
        except SyncError as error:
            state.record_error(error)
            logger.warning(
                "sync_fetch_failed",
                extra={
                    "correlation_id": correlation_id,
                    "user_id": self.user_id,
                    "entity_kind": kind.value,
                    "error_kind": error.kind.value,
                },
            )
            if isinstance(error, AuthError):
                self._handle_auth_error(error)
            return

        state.entities = merge_remote_snapshot(
            remote_entities,
            state.entities,
            pending_operations=state.pending_operations,
            inflight=state.inflight,
            confirmed=state.confirmed_since(fetch_seq),
        )
        state.forget_confirmed(fetch_seq)
        state.last_sync_timestamp = utc_now()
        await runtime.persister.save_snapshot()
        logger.info(
            "sync_merged",
            extra={
                "correlation_id": correlation_id,
                "user_id": self.user_id,
                "entity_kind": kind.value,
                "remote_count": len(remote_entities),
                "local_count": len(state.entities),
                "pending_count": len(state.pending_operations),
            },
        )

    def _handle_auth_error(self, error: AuthError) -> None:
        logger.error(
            "sync_auth_failed", extra={"user_id": self.user_id, "error": error.message}
        )
        if self._on_auth_error is not None:
            self._on_auth_error(error)
