"""Tests for the cache database session."""

from __future__ import annotations

from unittest.mock import patch

import peewee
import pytest

from linkhive.db.models import CacheEntry


class TestDatabaseSessionManager:
    @pytest.mark.asyncio
    async def test_lock_contention_is_retried(self, session_manager):
        calls = []

        def flaky() -> str:
            calls.append(1)
            if len(calls) < 3:
                raise peewee.OperationalError("database is locked")
            return "ok"

        with patch("linkhive.db.session.asyncio.sleep") as sleep:
            sleep.return_value = None
            result = await session_manager.run_read(flaky, operation_name="flaky")

        assert result == "ok"
        assert len(calls) == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_other_operational_errors_are_raised(self, session_manager):
        def broken() -> None:
            raise peewee.OperationalError("no such table: missing")

        with pytest.raises(peewee.OperationalError):
            await session_manager.run_read(broken, operation_name="broken")

    @pytest.mark.asyncio
    async def test_failed_write_rolls_back(self, session_manager):
        def insert_then_fail() -> None:
            CacheEntry.create(
                cache_key="links:u",
                user_id="u",
                entity_kind="links",
                namespace="snapshot",
                payload={},
            )
            raise peewee.IntegrityError("forced")

        with pytest.raises(peewee.IntegrityError):
            await session_manager.run_write(insert_then_fail, operation_name="insert")

        count = await session_manager.run_read(
            lambda: CacheEntry.select().count(), operation_name="count"
        )
        assert count == 0

    def test_display_name_hides_directories(self, session_manager):
        assert session_manager.display_name == "linkhive_cache.db"
