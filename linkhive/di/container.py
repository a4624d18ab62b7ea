"""Dependency injection container for wiring the sync engine.

The container owns the shared infrastructure of one process (configuration,
logging, the cache database, the realtime registry) and builds one
``SyncEngine`` per signed-in user.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from linkhive.adapters.remote import RealtimeChannelRegistry, SupabaseRemoteStore
from linkhive.config import load_config
from linkhive.core.logging_utils import setup_json_logging
from linkhive.db.session import DatabaseSessionManager
from linkhive.infrastructure.persistence.sqlite.repositories import SqliteLocalCacheStore
from linkhive.sync import SyncEngine

if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx

    from linkhive.config import AppConfig
    from linkhive.domain.exceptions import AuthError

logger = logging.getLogger(__name__)


class Container:
    """Dependency injection container.

    Example:
        ```python
        container = Container.from_env()
        engine = await container.start_session(user_id, access_token)
        ...
        await container.end_session()
        await container.close()
        ```
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        configure_logging: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the container.

        Args:
            config: Loaded application configuration.
            configure_logging: Install the JSON logging sinks from ``config.runtime``.
            transport: Optional httpx transport for the remote store (used by tests).
        """
        self._config = config
        self._transport = transport
        self._session_manager: DatabaseSessionManager | None = None
        self._cache_store: SqliteLocalCacheStore | None = None
        self._realtime = RealtimeChannelRegistry()
        self._remote: SupabaseRemoteStore | None = None
        self._engine: SyncEngine | None = None
        if configure_logging:
            setup_json_logging(
                level=config.runtime.log_level,
                use_loguru=config.runtime.use_loguru,
                log_file=config.runtime.log_file,
            )

    @classmethod
    def from_env(cls, **overrides: Any) -> Container:
        return cls(load_config(**overrides))

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def realtime(self) -> RealtimeChannelRegistry:
        """Registry the websocket transport dispatches change events into."""
        return self._realtime

    @property
    def engine(self) -> SyncEngine | None:
        return self._engine

    def session_manager(self) -> DatabaseSessionManager:
        if self._session_manager is None:
            self._session_manager = DatabaseSessionManager(self._config.sync.cache_db_path)
            self._session_manager.migrate()
        return self._session_manager

    def cache_store(self) -> SqliteLocalCacheStore:
        if self._cache_store is None:
            self._cache_store = SqliteLocalCacheStore(self.session_manager())
        return self._cache_store

    async def start_session(
        self,
        user_id: str,
        access_token: str | None = None,
        *,
        on_auth_error: Callable[[AuthError], Any] | None = None,
    ) -> SyncEngine:
        """Open the remote client for ``user_id`` and start a sync session."""
        if self._engine is not None:
            await self.end_session()

        remote = SupabaseRemoteStore(
            self._config.supabase,
            access_token,
            transport=self._transport,
            realtime=self._realtime,
        )
        await remote.__aenter__()
        self._remote = remote
        self._engine = SyncEngine(
            user_id,
            remote,
            self.cache_store(),
            self._config.sync,
            on_auth_error=on_auth_error,
        )
        await self._engine.on_session_start()
        logger.info("container_session_started", extra={"user_id": str(user_id)})
        return self._engine

    async def end_session(self) -> None:
        """Sign-out: stop the engine, wipe the user's cache and close the client."""
        engine, self._engine = self._engine, None
        if engine is not None:
            await engine.on_session_end()
        await self._close_remote()

    async def close(self) -> None:
        """Release process resources without clearing the cache."""
        engine, self._engine = self._engine, None
        if engine is not None:
            await engine.close()
        await self._close_remote()
        self._realtime.clear()
        if self._session_manager is not None:
            self._session_manager.close()
            self._session_manager = None
            self._cache_store = None

    async def _close_remote(self) -> None:
        remote, self._remote = self._remote, None
        if remote is not None:
            await remote.__aexit__(None, None, None)
