"""Optimistic create/update/delete with rollback and queueing.

Every mutation is applied to memory and the cache first, then sent to the
remote store. Recoverable failures keep the optimistic state and enqueue the
operation for replay; anything else restores the pre-mutation state and is
surfaced through ``last_error``.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from linkhive.core.logging_utils import generate_correlation_id
from linkhive.core.time_utils import utc_now
from linkhive.domain.exceptions import AuthError, ConflictError, SyncError, ValidationError
from linkhive.domain.models import OperationKind, SyncEntity, entity_model, new_temporary_id

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from linkhive.domain.models import PendingOperation
    from linkhive.sync.pending_queue import PendingOperationQueue
    from linkhive.sync.persistence import StatePersister
    from linkhive.sync.remote_gateway import RemoteGateway
    from linkhive.sync.state import SyncState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MutationResult:
    """Outcome of a mutation as seen by the caller.

    ``entity`` is the entity as it now stands in memory (None when it was
    removed or never created). ``queued`` is set when the operation waits in
    the pending queue for connectivity.
    """

    entity: SyncEntity | None = None
    error: SyncError | None = None
    queued: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None


def _invalid_attributes(exc: PydanticValidationError) -> ValidationError:
    fields = sorted({".".join(str(part) for part in err["loc"]) for err in exc.errors()})
    return ValidationError(f"Invalid attributes: {', '.join(fields)}", {"fields": fields})


class MutationPipeline:
    """Applies user mutations for one entity kind."""

    def __init__(
        self,
        state: SyncState,
        gateway: RemoteGateway,
        queue: PendingOperationQueue,
        persister: StatePersister,
        *,
        request_refresh: Callable[[], Awaitable[Any]],
        on_auth_error: Callable[[AuthError], Any] | None = None,
    ) -> None:
        self._state = state
        self._gateway = gateway
        self._queue = queue
        self._persister = persister
        self._request_refresh = request_refresh
        self._on_auth_error = on_auth_error
        self._model = entity_model(state.entity_kind)
        self._locks: dict[str, asyncio.Lock] = {}
        self._refresh_tasks: set[asyncio.Task[Any]] = set()

    @property
    def entity_kind(self) -> str:
        return self._state.entity_kind.value

    @asynccontextmanager
    async def entity_guard(self, entity_id: str) -> AsyncIterator[str]:
        """Serialize mutations of one entity; yields its current canonical id.

        When a Create is confirmed while a caller waits on the temporary
        marker, the caller moves on to the lock of the remote id.
        """
        while True:
            canonical = self._state.resolve_id(entity_id)
            lock = self._locks.setdefault(canonical, asyncio.Lock())
            await lock.acquire()
            if self._state.resolve_id(entity_id) == canonical:
                break
            lock.release()
        try:
            yield canonical
        finally:
            lock.release()

    def reset(self) -> None:
        self._locks.clear()
        for task in self._refresh_tasks:
            task.cancel()
        self._refresh_tasks.clear()

    # ------------------------------------------------------------------ create

    async def create(self, attributes: dict[str, Any]) -> MutationResult:
        self._state.clear_error()
        correlation_id = generate_correlation_id()
        temp_id = new_temporary_id()
        now = utc_now()
        try:
            optimistic = self._model.model_validate(
                {
                    **self._model.clean_attributes(attributes),
                    "id": temp_id,
                    "user_id": self._gateway.user_id,
                    "created_at": now,
                    "updated_at": now,
                    "pending": True,
                }
            )
        except PydanticValidationError as exc:
            return self._fail(_invalid_attributes(exc), correlation_id, "create")

        payload = optimistic.attributes()
        async with self.entity_guard(temp_id):
            self._state.entities = [optimistic, *self._state.entities]
            self._state.inflight[temp_id] = OperationKind.CREATE
            await self._persister.save_snapshot()
            logger.info(
                "mutation_applied_optimistically",
                extra={
                    "correlation_id": correlation_id,
                    "entity_kind": self.entity_kind,
                    "operation": "create",
                    "entity_id": temp_id,
                },
            )
            try:
                data = await self._gateway.create(payload, correlation_id=correlation_id)
                confirmed = self._gateway.to_entity(data)
            except SyncError as error:
                self._state.inflight.pop(temp_id, None)
                if error.recoverable:
                    await self._queue.enqueue(
                        self._queue.build(OperationKind.CREATE, local_id=temp_id, payload=payload)
                    )
                    self._state.record_error(error)
                    return MutationResult(entity=optimistic, error=error, queued=True)
                self._remove(temp_id)
                await self._persister.save_snapshot()
                return self._fail(error, correlation_id, "create")

            self._state.inflight.pop(temp_id, None)
            self._confirm_create(temp_id, confirmed)
            self._state.mark_confirmed(confirmed.id, OperationKind.CREATE)
            await self._persister.save_snapshot()
            logger.info(
                "mutation_confirmed",
                extra={
                    "correlation_id": correlation_id,
                    "entity_kind": self.entity_kind,
                    "operation": "create",
                    "entity_id": confirmed.id,
                    "local_id": temp_id,
                },
            )
            return MutationResult(entity=confirmed)

    # ------------------------------------------------------------------ update

    async def update(self, entity_id: str, attributes: dict[str, Any]) -> MutationResult:
        self._state.clear_error()
        correlation_id = generate_correlation_id()
        async with self.entity_guard(entity_id) as canonical:
            previous = self._state.find(canonical)
            if previous is None:
                error = ConflictError(
                    f"{self.entity_kind} {entity_id} is not present locally",
                    {"entity_id": entity_id},
                )
                return self._fail(error, correlation_id, "update")
            try:
                optimistic = previous.with_attributes(attributes, pending=True, updated_at=utc_now())
            except PydanticValidationError as exc:
                return self._fail(_invalid_attributes(exc), correlation_id, "update")

            self._replace(canonical, optimistic)
            changed = set(self._model.clean_attributes(attributes))
            payload = {k: v for k, v in optimistic.attributes().items() if k in changed}

            if previous.is_temporary:
                # The Create is still queued; send the final attributes with it
                await self._queue.fold_into_create(canonical, payload)
                await self._persister.save_snapshot()
                return MutationResult(entity=optimistic, queued=True)

            if self._queue.has_pending_for(canonical):
                # Keep per-entity ordering behind operations already queued
                await self._queue.enqueue(
                    self._queue.build(OperationKind.UPDATE, target_id=canonical, payload=payload)
                )
                await self._persister.save_snapshot()
                return MutationResult(entity=optimistic, queued=True)

            self._state.inflight[canonical] = OperationKind.UPDATE
            await self._persister.save_snapshot()
            try:
                data = await self._gateway.update(canonical, payload, correlation_id=correlation_id)
                confirmed = self._merge_response(optimistic, data, pending=False)
            except SyncError as error:
                self._state.inflight.pop(canonical, None)
                if error.recoverable:
                    await self._queue.enqueue(
                        self._queue.build(
                            OperationKind.UPDATE, target_id=canonical, payload=payload
                        )
                    )
                    self._state.record_error(error)
                    return MutationResult(entity=optimistic, error=error, queued=True)
                self._replace(canonical, previous)
                await self._persister.save_snapshot()
                return self._fail(error, correlation_id, "update")

            self._state.inflight.pop(canonical, None)
            self._replace(canonical, confirmed)
            self._state.mark_confirmed(canonical, OperationKind.UPDATE)
            await self._persister.save_snapshot()
            return MutationResult(entity=confirmed)

    # ------------------------------------------------------------------ delete

    async def delete(self, entity_id: str) -> MutationResult:
        self._state.clear_error()
        correlation_id = generate_correlation_id()
        async with self.entity_guard(entity_id) as canonical:
            index = self._state.index_of(canonical)
            if index is None:
                error = ConflictError(
                    f"{self.entity_kind} {entity_id} is not present locally",
                    {"entity_id": entity_id},
                )
                return self._fail(error, correlation_id, "delete")
            previous = self._state.entities[index]
            self._remove(canonical)

            if previous.is_temporary:
                await self._queue.enqueue(
                    self._queue.build(OperationKind.DELETE, local_id=canonical)
                )
                await self._persister.save_snapshot()
                return MutationResult(entity=None)

            if self._queue.has_pending_for(canonical):
                await self._queue.enqueue(
                    self._queue.build(OperationKind.DELETE, target_id=canonical)
                )
                await self._persister.save_snapshot()
                return MutationResult(entity=None, queued=True)

            self._state.inflight[canonical] = OperationKind.DELETE
            await self._persister.save_snapshot()
            try:
                await self._gateway.delete(canonical, correlation_id=correlation_id)
            except SyncError as error:
                self._state.inflight.pop(canonical, None)
                if error.recoverable:
                    await self._queue.enqueue(
                        self._queue.build(OperationKind.DELETE, target_id=canonical)
                    )
                    self._state.record_error(error)
                    return MutationResult(entity=None, error=error, queued=True)
                self._insert_at(index, previous)
                await self._persister.save_snapshot()
                return self._fail(error, correlation_id, "delete")

            self._state.inflight.pop(canonical, None)
            self._state.mark_confirmed(canonical, OperationKind.DELETE)
            return MutationResult(entity=None)

    # ------------------------------------------------------------------ replay

    async def replay_operation(
        self, operation: PendingOperation, *, correlation_id: str | None = None
    ) -> None:
        """Send one queued operation to the remote store and reconcile memory."""
        ref = operation.entity_ref
        if ref is None:
            return
        async with self.entity_guard(ref) as canonical:
            if operation.kind == OperationKind.CREATE:
                data = await self._gateway.create(operation.payload, correlation_id=correlation_id)
                confirmed = self._gateway.to_entity(data)
                self._confirm_create(ref, confirmed)
                self._queue.retarget(ref, confirmed.id)
                self._state.mark_confirmed(confirmed.id, OperationKind.CREATE)
            elif operation.kind == OperationKind.UPDATE:
                data = await self._gateway.update(
                    canonical, operation.payload, correlation_id=correlation_id
                )
                current = self._state.find(canonical)
                # Later queued updates keep the local attributes until they are replayed
                if current is not None and self._queue.pending_count_for(canonical) <= 1:
                    self._replace(canonical, self._merge_response(current, data, pending=False))
                self._state.mark_confirmed(canonical, OperationKind.UPDATE)
            else:
                await self._gateway.delete(canonical, correlation_id=correlation_id)
                self._state.mark_confirmed(canonical, OperationKind.DELETE)
            await self._persister.save_snapshot()

    def replay_halted(self, operation: PendingOperation, error: SyncError) -> None:
        """React to a queued operation the remote store refused; the queue keeps it."""
        if isinstance(error, AuthError):
            self._notify_auth_error(error)
        elif isinstance(error, ConflictError):
            self._schedule_refresh()

    # ------------------------------------------------------------------ helpers

    def _fail(self, error: SyncError, correlation_id: str, operation: str) -> MutationResult:
        self._state.record_error(error)
        logger.warning(
            "mutation_failed",
            extra={
                "correlation_id": correlation_id,
                "entity_kind": self.entity_kind,
                "operation": operation,
                "error_kind": error.kind.value,
                "error": error.message,
            },
        )
        if isinstance(error, ConflictError):
            self._schedule_refresh()
        elif isinstance(error, AuthError):
            self._notify_auth_error(error)
        return MutationResult(error=error)

    def _notify_auth_error(self, error: AuthError) -> None:
        if self._on_auth_error is not None:
            self._on_auth_error(error)

    def _schedule_refresh(self) -> None:
        task = asyncio.get_running_loop().create_task(self._request_refresh())
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    def _merge_response(self, current: SyncEntity, data: Any, pending: bool) -> SyncEntity:
        if not isinstance(data, dict):
            return current.model_copy(update={"pending": pending})
        merged = {**current.model_dump(), **data, "pending": pending}
        for field_name in current.READ_ONLY_FIELDS:
            if field_name not in data:
                merged[field_name] = current.model_dump()[field_name]
        return self._gateway.to_entity(merged)

    def _replace(self, entity_id: str, entity: SyncEntity) -> None:
        self._state.entities = [
            entity if existing.id == entity_id else existing for existing in self._state.entities
        ]

    def _remove(self, entity_id: str) -> None:
        self._state.entities = [e for e in self._state.entities if e.id != entity_id]

    def _insert_at(self, index: int, entity: SyncEntity) -> None:
        entities = list(self._state.entities)
        entities.insert(min(index, len(entities)), entity)
        self._state.entities = entities

    def _confirm_create(self, temp_id: str, confirmed: SyncEntity) -> None:
        """Swap the temporary entity for its confirmed version in one step."""
        replaced = False
        entities: list[SyncEntity] = []
        for existing in self._state.entities:
            if existing.id == temp_id:
                entities.append(confirmed)
                replaced = True
            elif existing.id != confirmed.id:
                # A full sync may already have delivered the confirmed row
                entities.append(existing)
        if not replaced:
            entities.insert(0, confirmed)
        self._state.entities = entities
        self._state.id_aliases[temp_id] = confirmed.id
