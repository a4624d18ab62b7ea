"""Tests for the SQLite-backed local cache store."""

from __future__ import annotations

import pytest

from linkhive.db.models import CacheEntry
from linkhive.domain.exceptions import StorageError
from linkhive.domain.models import (
    CacheSnapshot,
    Collection,
    EntityKind,
    Link,
    OperationKind,
    PendingOperation,
)
from linkhive.infrastructure.persistence.sqlite.repositories import pending_key, snapshot_key

USER_ID = "user-1"


def _links(*ids: str) -> list[Link]:
    return [
        Link(id=entity_id, user_id=USER_ID, url=f"https://example.com/{entity_id}", tags=["t"])
        for entity_id in ids
    ]


def test_keys_are_namespaced_per_user_and_kind():
    assert snapshot_key(USER_ID, EntityKind.LINKS) == "links:user-1"
    assert pending_key(USER_ID, EntityKind.COLLECTIONS) == "pending_operations:collections:user-1"


class TestSnapshots:
    @pytest.mark.asyncio
    async def test_load_without_snapshot_returns_none(self, sqlite_cache):
        assert await sqlite_cache.load(USER_ID, EntityKind.LINKS) is None

    @pytest.mark.asyncio
    async def test_save_then_load_keeps_order_and_fields(self, sqlite_cache):
        snapshot = CacheSnapshot.from_entities(EntityKind.LINKS, _links("3", "1", "2"))

        await sqlite_cache.save(USER_ID, EntityKind.LINKS, snapshot)
        loaded = await sqlite_cache.load(USER_ID, EntityKind.LINKS)

        entities = loaded.to_entities()
        assert [e.id for e in entities] == ["3", "1", "2"]
        assert entities[0].tags == ["t"]

    @pytest.mark.asyncio
    async def test_save_overwrites_previous_snapshot(self, sqlite_cache):
        await sqlite_cache.save(
            USER_ID, EntityKind.LINKS, CacheSnapshot.from_entities(EntityKind.LINKS, _links("1"))
        )
        await sqlite_cache.save(
            USER_ID, EntityKind.LINKS, CacheSnapshot.from_entities(EntityKind.LINKS, _links("2"))
        )

        loaded = await sqlite_cache.load(USER_ID, EntityKind.LINKS)

        assert [item["id"] for item in loaded.entities] == ["2"]
        assert CacheEntry.select().count() == 1

    @pytest.mark.asyncio
    async def test_collections_keep_embedded_links(self, sqlite_cache):
        collection = Collection(id="c1", user_id=USER_ID, name="Reading", links=_links("1"))

        await sqlite_cache.save(
            USER_ID,
            EntityKind.COLLECTIONS,
            CacheSnapshot.from_entities(EntityKind.COLLECTIONS, [collection]),
        )
        [loaded] = (await sqlite_cache.load(USER_ID, EntityKind.COLLECTIONS)).to_entities()

        assert loaded.name == "Reading"
        assert loaded.link_count == 1

    @pytest.mark.asyncio
    async def test_corrupt_snapshot_raises_storage_error(self, sqlite_cache):
        CacheEntry.create(
            cache_key=snapshot_key(USER_ID, EntityKind.LINKS),
            user_id=USER_ID,
            entity_kind="links",
            namespace="snapshot",
            payload={"entities": "not-a-list"},
        )

        with pytest.raises(StorageError):
            await sqlite_cache.load(USER_ID, EntityKind.LINKS)


class TestPendingLog:
    @pytest.mark.asyncio
    async def test_pending_operations_round_trip(self, sqlite_cache):
        operations = [
            PendingOperation(
                id=1,
                kind=OperationKind.UPDATE,
                entity_kind=EntityKind.LINKS,
                target_id="9",
                payload={"title": "offline"},
            ),
            PendingOperation(id=2, kind=OperationKind.DELETE, entity_kind=EntityKind.LINKS, target_id="8"),
        ]

        await sqlite_cache.save_pending(USER_ID, EntityKind.LINKS, operations)
        loaded = await sqlite_cache.load_pending(USER_ID, EntityKind.LINKS)

        assert loaded == operations

    @pytest.mark.asyncio
    async def test_missing_pending_log_is_empty(self, sqlite_cache):
        assert await sqlite_cache.load_pending(USER_ID, EntityKind.LINKS) == []


class TestClear:
    @pytest.mark.asyncio
    async def test_clear_removes_only_that_users_entries(self, sqlite_cache):
        snapshot = CacheSnapshot.from_entities(EntityKind.LINKS, _links("1"))
        await sqlite_cache.save(USER_ID, EntityKind.LINKS, snapshot)
        await sqlite_cache.save_pending(USER_ID, EntityKind.LINKS, [])
        await sqlite_cache.save("user-2", EntityKind.LINKS, snapshot)

        await sqlite_cache.clear(USER_ID)

        assert await sqlite_cache.load(USER_ID, EntityKind.LINKS) is None
        assert await sqlite_cache.load("user-2", EntityKind.LINKS) is not None

    @pytest.mark.asyncio
    async def test_database_failure_becomes_storage_error(self, sqlite_cache, session_manager):
        session_manager.database.execute_sql("DROP TABLE cache_entries")

        with pytest.raises(StorageError):
            await sqlite_cache.save(
                USER_ID, EntityKind.LINKS, CacheSnapshot.from_entities(EntityKind.LINKS, [])
            )
