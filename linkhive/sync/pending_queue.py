"""Durable FIFO of mutations awaiting remote confirmation.

Operations are appended when a mutation fails with a recoverable error and
replayed in enqueue order. The log is persisted after every change so it
survives restarts.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import BaseModel, Field

from linkhive.core.logging_utils import correlation_scope
from linkhive.domain.exceptions import AuthError, ConflictError, SyncError
from linkhive.domain.models import EntityKind, OperationKind, PendingOperation

if TYPE_CHECKING:
    from collections.abc import Callable

    from linkhive.sync.persistence import StatePersister
    from linkhive.sync.state import SyncState

logger = logging.getLogger(__name__)


class ReplayHandler(Protocol):
    """Executes queued operations against the remote store."""

    async def replay_operation(
        self, operation: PendingOperation, *, correlation_id: str | None = None
    ) -> None: ...

    def replay_halted(self, operation: PendingOperation, error: SyncError) -> None: ...


class ReplayResult(BaseModel):
    """Result of draining the pending queue of one entity kind."""

    entity_kind: EntityKind
    replayed: int = 0
    remaining: int = 0
    skipped: bool = False
    errors: list[str] = Field(default_factory=list)
    retryable_errors: list[str] = Field(default_factory=list)
    permanent_errors: list[str] = Field(default_factory=list)
    duration_seconds: float = 0.0


def record_error(result: ReplayResult, message: str, retryable: bool) -> None:
    if message not in result.errors:
        result.errors.append(message)
    if retryable:
        result.retryable_errors.append(message)
    else:
        result.permanent_errors.append(message)


class PendingOperationQueue:
    """Pending-operation log for one (user, kind) pair."""

    def __init__(
        self,
        state: SyncState,
        persister: StatePersister,
        *,
        next_id: Callable[[], int],
    ) -> None:
        self._state = state
        self._persister = persister
        self._next_id = next_id
        self._replaying = False

    @property
    def entity_kind(self) -> EntityKind:
        return self._state.entity_kind

    @property
    def operations(self) -> tuple[PendingOperation, ...]:
        return tuple(self._state.pending_operations)

    def __len__(self) -> int:
        return len(self._state.pending_operations)

    def has_pending_for(self, entity_id: str) -> bool:
        return any(op.entity_ref == entity_id for op in self._state.pending_operations)

    def pending_count_for(self, entity_id: str) -> int:
        return sum(1 for op in self._state.pending_operations if op.entity_ref == entity_id)

    def find_create(self, local_id: str) -> PendingOperation | None:
        for op in self._state.pending_operations:
            if op.kind == OperationKind.CREATE and op.local_id == local_id:
                return op
        return None

    def build(
        self,
        kind: OperationKind,
        *,
        target_id: str | None = None,
        local_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> PendingOperation:
        return PendingOperation(
            id=self._next_id(),
            kind=kind,
            entity_kind=self.entity_kind,
            target_id=target_id,
            local_id=local_id,
            payload=payload or {},
        )

    async def enqueue(self, operation: PendingOperation) -> bool:
        """Append ``operation`` and persist the log.

        A Delete of an entity whose Create is still queued removes both, along
        with anything queued against the temporary marker in between. Returns
        False when the operation collapsed instead of being appended.
        """
        if operation.kind == OperationKind.DELETE:
            ref = operation.entity_ref
            if ref and self.find_create(ref) is not None:
                before = len(self._state.pending_operations)
                self._state.pending_operations = [
                    op for op in self._state.pending_operations if op.entity_ref != ref
                ]
                await self._persister.save_pending()
                logger.info(
                    "pending_operation_collapsed",
                    extra={
                        "entity_kind": self.entity_kind.value,
                        "entity_id": ref,
                        "removed": before - len(self._state.pending_operations),
                    },
                )
                return False

        self._state.pending_operations = [*self._state.pending_operations, operation]
        await self._persister.save_pending()
        logger.info(
            "pending_operation_enqueued",
            extra={
                "entity_kind": self.entity_kind.value,
                "operation": operation.describe(),
                "operation_id": operation.id,
                "queue_size": len(self._state.pending_operations),
            },
        )
        return True

    async def fold_into_create(self, local_id: str, attributes: dict[str, Any]) -> bool:
        """Merge ``attributes`` into the queued Create for ``local_id``."""
        create = self.find_create(local_id)
        if create is None:
            return False
        folded = create.model_copy(update={"payload": {**create.payload, **attributes}})
        self._state.pending_operations = [
            folded if op.id == create.id else op for op in self._state.pending_operations
        ]
        await self._persister.save_pending()
        return True

    async def remove(self, operation_id: int) -> None:
        self._state.pending_operations = [
            op for op in self._state.pending_operations if op.id != operation_id
        ]
        await self._persister.save_pending()

    def retarget(self, local_id: str, remote_id: str) -> None:
        """Point operations queued against a temporary marker at its remote id."""
        self._state.pending_operations = [
            op.model_copy(update={"target_id": remote_id, "local_id": None})
            if op.kind != OperationKind.CREATE and op.entity_ref == local_id
            else op
            for op in self._state.pending_operations
        ]

    async def replay_all(self, handler: ReplayHandler) -> ReplayResult:
        """Replay queued operations in order until the queue drains or one fails.

        Any failure stops the replay with the failing operation left at the
        head and everything behind it untouched; the error is recorded on the
        state. A Delete the remote store reports as missing counts as done.
        A concurrent call for the same kind returns immediately with
        ``skipped`` set.
        """
        result = ReplayResult(entity_kind=self.entity_kind)
        if self._replaying:
            result.skipped = True
            result.remaining = len(self)
            return result
        if not self._state.pending_operations:
            return result

        self._replaying = True
        with correlation_scope() as correlation_id:
            return await self._drain(handler, result, correlation_id)

    async def _drain(
        self, handler: ReplayHandler, result: ReplayResult, correlation_id: str
    ) -> ReplayResult:
        started = time.perf_counter()
        logger.info(
            "pending_replay_started",
            extra={
                "correlation_id": correlation_id,
                "entity_kind": self.entity_kind.value,
                "queue_size": len(self),
            },
        )
        try:
            while self._state.pending_operations:
                operation = self._state.pending_operations[0]
                try:
                    await handler.replay_operation(operation, correlation_id=correlation_id)
                except SyncError as error:
                    if operation.kind == OperationKind.DELETE and isinstance(
                        error, ConflictError
                    ):
                        # Already gone remotely
                        logger.info(
                            "pending_delete_already_applied",
                            extra={
                                "correlation_id": correlation_id,
                                "operation": operation.describe(),
                            },
                        )
                        await self.remove(operation.id)
                        result.replayed += 1
                        continue
                    retryable = error.recoverable or isinstance(error, AuthError)
                    record_error(result, f"{operation.describe()}: {error.message}", retryable)
                    self._state.record_error(error)
                    logger.warning(
                        "pending_replay_halted",
                        extra={
                            "correlation_id": correlation_id,
                            "operation": operation.describe(),
                            "error_kind": error.kind.value,
                            "error": error.message,
                            "queue_size": len(self),
                        },
                    )
                    handler.replay_halted(operation, error)
                    break

                await self.remove(operation.id)
                result.replayed += 1
        finally:
            self._replaying = False

        result.remaining = len(self)
        result.duration_seconds = time.perf_counter() - started
        logger.info(
            "pending_replay_finished",
            extra={
                "correlation_id": correlation_id,
                "entity_kind": self.entity_kind.value,
                "replayed": result.replayed,
                "remaining": result.remaining,
                "duration_sec": round(result.duration_seconds, 3),
            },
        )
        return result
