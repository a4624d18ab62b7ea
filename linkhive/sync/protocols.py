"""Protocol definitions (ports) for the sync engine.

Keeping these as Protocols isolates sync orchestration from the concrete
remote backend and cache persistence implementations.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable

    from linkhive.domain.models import CacheSnapshot, EntityKind, PendingOperation


class SubscriptionHandle(Protocol):
    def unsubscribe(self) -> None: ...


class RemoteStore(Protocol):
    """Authoritative store for links and collections.

    Failures raise exceptions carrying a ``kind`` of ``network``, ``validation``,
    ``auth``, ``notFound`` or ``unknown``.
    """

    async def fetch_all(self, user_id: str, entity_kind: EntityKind) -> list[dict[str, Any]]: ...

    async def create(
        self, user_id: str, entity_kind: EntityKind, payload: dict[str, Any]
    ) -> dict[str, Any]: ...

    async def update(
        self, user_id: str, entity_kind: EntityKind, entity_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]: ...

    async def delete(self, user_id: str, entity_kind: EntityKind, entity_id: str) -> None: ...

    def subscribe(
        self, user_id: str, entity_kind: EntityKind, callback: Callable[[str], None]
    ) -> SubscriptionHandle: ...

    def unsubscribe(self, handle: SubscriptionHandle) -> None: ...

    async def add_link_to_collection(
        self, user_id: str, link_id: str, collection_id: str
    ) -> None: ...

    async def remove_link_from_collection(self, link_id: str, collection_id: str) -> None: ...


class LocalCacheStore(Protocol):
    """Durable per-user cache of snapshots and pending-operation logs.

    I/O failures raise ``StorageError``.
    """

    async def save(self, user_id: str, entity_kind: EntityKind, snapshot: CacheSnapshot) -> None: ...

    async def load(self, user_id: str, entity_kind: EntityKind) -> CacheSnapshot | None: ...

    async def clear(self, user_id: str) -> None: ...

    async def save_pending(
        self, user_id: str, entity_kind: EntityKind, operations: list[PendingOperation]
    ) -> None: ...

    async def load_pending(
        self, user_id: str, entity_kind: EntityKind
    ) -> list[PendingOperation]: ...
