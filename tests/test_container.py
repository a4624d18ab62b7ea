"""Tests for wiring the engine through the dependency injection container."""

from __future__ import annotations

import json

import httpx
import pytest

from linkhive.config import load_config
from linkhive.di.container import Container
from linkhive.domain.models import EntityKind

USER_ID = "user-1"


def _handler(rows: dict[str, list]):
    requests: list[httpx.Request] = []

    def handle(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        table = request.url.path.rsplit("/", 1)[-1]
        if request.method == "GET":
            return httpx.Response(200, json=rows.get(table, []))
        if request.method == "POST":
            body = json.loads(request.content)
            return httpx.Response(201, json=[{"id": "501", **body}])
        return httpx.Response(204)

    return handle, requests


@pytest.fixture
def config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return load_config(
        sync={"cache_db_path": str(tmp_path / "cache.db"), "debounce_window_sec": 0.05},
        supabase={"url": "https://project.supabase.co", "anon_key": "anon"},
    )


class TestContainer:
    @pytest.mark.asyncio
    async def test_session_fetches_through_http_and_caches(self, config):
        handler, requests = _handler(
            {"links": [{"id": "1", "user_id": USER_ID, "url": "https://a.example"}]}
        )
        container = Container(config, configure_logging=False, transport=httpx.MockTransport(handler))

        engine = await container.start_session(USER_ID, "jwt")

        assert [e.id for e in engine.get_entities(EntityKind.LINKS)] == ["1"]
        assert {r.url.path for r in requests} == {"/rest/v1/links", "/rest/v1/collections"}
        cached = await container.cache_store().load(USER_ID, EntityKind.LINKS)
        assert [item["id"] for item in cached.entities] == ["1"]
        await container.close()

    @pytest.mark.asyncio
    async def test_close_keeps_cache_for_next_start(self, config):
        handler, _ = _handler({})
        container = Container(config, configure_logging=False, transport=httpx.MockTransport(handler))
        engine = await container.start_session(USER_ID)
        await engine.create(EntityKind.LINKS, {"url": "https://new.example"})

        await container.close()

        reopened = Container(config, configure_logging=False, transport=httpx.MockTransport(handler))
        cached = await reopened.cache_store().load(USER_ID, EntityKind.LINKS)
        assert [item["id"] for item in cached.entities] == ["501"]
        await reopened.close()

    @pytest.mark.asyncio
    async def test_end_session_wipes_cache(self, config):
        handler, _ = _handler({"links": [{"id": "1", "user_id": USER_ID}]})
        container = Container(config, configure_logging=False, transport=httpx.MockTransport(handler))
        await container.start_session(USER_ID)

        await container.end_session()

        assert container.engine is None
        assert await container.cache_store().load(USER_ID, EntityKind.LINKS) is None
        assert container.realtime.subscriber_count(USER_ID, EntityKind.LINKS) == 0
        await container.close()
