"""Pytest configuration and shared fixtures.

Provides an in-memory fake of the remote store and a SQLite-backed cache
store on a temporary file.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
from collections import defaultdict
from typing import Any

import pytest

from linkhive.adapters.remote.realtime import RealtimeChannelRegistry
from linkhive.config import SyncEngineConfig
from linkhive.core.time_utils import utc_now
from linkhive.db.session import DatabaseSessionManager
from linkhive.domain.exceptions import RemoteStoreError, StorageError
from linkhive.domain.models import EntityKind
from linkhive.infrastructure.persistence.sqlite.repositories import SqliteLocalCacheStore

USER_ID = "user-1"


class FakeRemoteStore:
    """Remote store double keeping rows in memory.

    ``fail_next(operation, exc)`` queues an exception for the next call of an
    operation. ``fetch_gate`` holds fetches open after they have read their
    rows, like a response still in transit; ``hold(operation)`` does the same
    for a mutation before it touches the rows.
    """

    def __init__(self) -> None:
        self.rows: dict[EntityKind, list[dict[str, Any]]] = {kind: [] for kind in EntityKind}
        self.calls: list[tuple[str, EntityKind | None, Any]] = []
        self.failures: dict[str, list[BaseException]] = defaultdict(list)
        self.fetch_gate: asyncio.Event | None = None
        self.gates: dict[str, asyncio.Event] = {}
        self.realtime = RealtimeChannelRegistry()
        self._ids = itertools.count(100)

    # test helpers ---------------------------------------------------------

    def hold(self, operation: str) -> asyncio.Event:
        gate = self.gates[operation] = asyncio.Event()
        return gate

    async def _pass_gate(self, operation: str) -> None:
        gate = self.gates.get(operation)
        if gate is not None:
            await gate.wait()

    def fail_next(self, operation: str, exc: BaseException, times: int = 1) -> None:
        self.failures[operation].extend([exc] * times)

    def seed(self, kind: EntityKind, **attributes: Any) -> dict[str, Any]:
        now = utc_now().isoformat()
        row = {
            "id": str(next(self._ids)),
            "user_id": USER_ID,
            "created_at": now,
            "updated_at": now,
            **attributes,
        }
        self.rows[kind].insert(0, row)
        return row

    def count(self, operation: str, kind: EntityKind | None = None) -> int:
        return sum(
            1 for name, k, _ in self.calls if name == operation and (kind is None or k == kind)
        )

    def _raise_if_scheduled(self, operation: str) -> None:
        queued = self.failures.get(operation)
        if queued:
            raise queued.pop(0)

    def _find(self, kind: EntityKind, entity_id: str) -> dict[str, Any]:
        for row in self.rows[kind]:
            if row["id"] == entity_id:
                return row
        raise RemoteStoreError("notFound", f"{kind.value} {entity_id} not found", 404)

    # RemoteStore protocol -------------------------------------------------

    async def fetch_all(self, user_id: str, entity_kind: EntityKind) -> list[dict[str, Any]]:
        kind = EntityKind(entity_kind)
        self.calls.append(("fetch_all", kind, user_id))
        rows = copy.deepcopy([row for row in self.rows[kind] if row["user_id"] == user_id])
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        self._raise_if_scheduled("fetch_all")
        return rows

    async def create(
        self, user_id: str, entity_kind: EntityKind, payload: dict[str, Any]
    ) -> dict[str, Any]:
        kind = EntityKind(entity_kind)
        self.calls.append(("create", kind, dict(payload)))
        await self._pass_gate("create")
        self._raise_if_scheduled("create")
        row = self.seed(kind, **payload)
        row["user_id"] = user_id
        return copy.deepcopy(row)

    async def update(
        self, user_id: str, entity_kind: EntityKind, entity_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        kind = EntityKind(entity_kind)
        self.calls.append(("update", kind, (entity_id, dict(payload))))
        await self._pass_gate("update")
        self._raise_if_scheduled("update")
        row = self._find(kind, entity_id)
        row.update(payload)
        row["updated_at"] = utc_now().isoformat()
        return copy.deepcopy(row)

    async def delete(self, user_id: str, entity_kind: EntityKind, entity_id: str) -> None:
        kind = EntityKind(entity_kind)
        self.calls.append(("delete", kind, entity_id))
        await self._pass_gate("delete")
        self._raise_if_scheduled("delete")
        row = self._find(kind, entity_id)
        self.rows[kind].remove(row)

    def subscribe(self, user_id: str, entity_kind: EntityKind, callback: Any) -> Any:
        self.calls.append(("subscribe", EntityKind(entity_kind), user_id))
        return self.realtime.subscribe(user_id, entity_kind, callback)

    def unsubscribe(self, handle: Any) -> None:
        self.calls.append(("unsubscribe", None, handle.channel))
        self.realtime.unsubscribe(handle)

    async def add_link_to_collection(self, user_id: str, link_id: str, collection_id: str) -> None:
        self.calls.append(("add_link_to_collection", None, (link_id, collection_id)))
        self._raise_if_scheduled("add_link_to_collection")
        link = self._find(EntityKind.LINKS, link_id)
        collection = self._find(EntityKind.COLLECTIONS, collection_id)
        collection.setdefault("links", []).append({"link": copy.deepcopy(link)})

    async def remove_link_from_collection(self, link_id: str, collection_id: str) -> None:
        self.calls.append(("remove_link_from_collection", None, (link_id, collection_id)))
        self._raise_if_scheduled("remove_link_from_collection")
        collection = self._find(EntityKind.COLLECTIONS, collection_id)
        collection["links"] = [
            item for item in collection.get("links", []) if item["link"]["id"] != link_id
        ]


class MemoryCacheStore:
    """Dict-backed cache store with switchable failures."""

    def __init__(self) -> None:
        self.snapshots: dict[tuple[str, EntityKind], Any] = {}
        self.pending: dict[tuple[str, EntityKind], list[Any]] = {}
        self.fail_writes = False
        self.fail_reads = False

    def _check(self, failing: bool) -> None:
        if failing:
            raise StorageError("disk full")

    async def save(self, user_id: str, entity_kind: EntityKind, snapshot: Any) -> None:
        self._check(self.fail_writes)
        self.snapshots[(user_id, EntityKind(entity_kind))] = snapshot.model_copy(deep=True)

    async def load(self, user_id: str, entity_kind: EntityKind) -> Any:
        self._check(self.fail_reads)
        return self.snapshots.get((user_id, EntityKind(entity_kind)))

    async def clear(self, user_id: str) -> None:
        self._check(self.fail_writes)
        for store in (self.snapshots, self.pending):
            for key in [key for key in store if key[0] == user_id]:
                del store[key]

    async def save_pending(self, user_id: str, entity_kind: EntityKind, operations: list) -> None:
        self._check(self.fail_writes)
        self.pending[(user_id, EntityKind(entity_kind))] = list(operations)

    async def load_pending(self, user_id: str, entity_kind: EntityKind) -> list:
        self._check(self.fail_reads)
        return list(self.pending.get((user_id, EntityKind(entity_kind)), []))


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def memory_cache() -> MemoryCacheStore:
    return MemoryCacheStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session_manager(tmp_path):
    manager = DatabaseSessionManager(str(tmp_path / "linkhive_cache.db"))
    manager.migrate()
    yield manager
    manager.close()


@pytest.fixture
def sqlite_cache(session_manager) -> SqliteLocalCacheStore:
    return SqliteLocalCacheStore(session_manager)


@pytest.fixture
def fast_config() -> SyncEngineConfig:
    return SyncEngineConfig(
        throttle_window_sec=30.0, debounce_window_sec=0.05, remote_timeout_sec=1.0
    )
