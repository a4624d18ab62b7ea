"""Timeout-bounded access to the remote store for one entity kind."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import ValidationError as PydanticValidationError

from linkhive.domain.exceptions import SyncError, UnknownRemoteError, classify_error
from linkhive.domain.models import EntityKind, SyncEntity, entity_model
from linkhive.sync.constants import DEFAULT_REMOTE_TIMEOUT_SECONDS

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from linkhive.sync.protocols import RemoteStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RemoteGateway:
    """Wraps every remote call in a timeout and the sync error taxonomy."""

    def __init__(
        self,
        remote: RemoteStore,
        user_id: str,
        entity_kind: EntityKind,
        *,
        timeout: float = DEFAULT_REMOTE_TIMEOUT_SECONDS,
    ) -> None:
        self.remote = remote
        self.user_id = user_id
        self.entity_kind = EntityKind(entity_kind)
        self.timeout = timeout
        self._model = entity_model(self.entity_kind)

    async def call(
        self,
        operation: str,
        factory: Callable[[], Awaitable[T]],
        *,
        correlation_id: str | None = None,
    ) -> T:
        started = time.perf_counter()
        try:
            return await asyncio.wait_for(factory(), timeout=self.timeout)
        except Exception as exc:
            error = classify_error(exc)
            logger.warning(
                "remote_call_failed",
                extra={
                    "correlation_id": correlation_id,
                    "entity_kind": self.entity_kind.value,
                    "operation": operation,
                    "error_kind": error.kind.value,
                    "error": error.message,
                    "latency_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
            if error is exc:
                raise
            raise error from exc

    def to_entity(self, data: Any) -> SyncEntity:
        try:
            return self._model.model_validate(data)
        except PydanticValidationError as exc:
            msg = f"Remote store returned an invalid {self.entity_kind.value} record"
            raise UnknownRemoteError(msg, {"errors": exc.error_count()}) from exc

    async def fetch_all(self, *, correlation_id: str | None = None) -> list[SyncEntity]:
        rows = await self.call(
            "fetch_all",
            lambda: self.remote.fetch_all(self.user_id, self.entity_kind),
            correlation_id=correlation_id,
        )
        entities: list[SyncEntity] = []
        for row in rows or []:
            try:
                entities.append(self.to_entity(row))
            except SyncError as exc:
                logger.warning(
                    "remote_row_skipped",
                    extra={
                        "correlation_id": correlation_id,
                        "entity_kind": self.entity_kind.value,
                        "row_id": row.get("id") if isinstance(row, dict) else None,
                        "error": exc.message,
                    },
                )
        return entities

    async def create(
        self, payload: dict[str, Any], *, correlation_id: str | None = None
    ) -> dict[str, Any]:
        return await self.call(
            "create",
            lambda: self.remote.create(self.user_id, self.entity_kind, payload),
            correlation_id=correlation_id,
        )

    async def update(
        self, entity_id: str, payload: dict[str, Any], *, correlation_id: str | None = None
    ) -> dict[str, Any]:
        return await self.call(
            "update",
            lambda: self.remote.update(self.user_id, self.entity_kind, entity_id, payload),
            correlation_id=correlation_id,
        )

    async def delete(self, entity_id: str, *, correlation_id: str | None = None) -> None:
        await self.call(
            "delete",
            lambda: self.remote.delete(self.user_id, self.entity_kind, entity_id),
            correlation_id=correlation_id,
        )
