"""SQLite session for the local cache.

Peewee is synchronous, so every cache call is shipped to a worker thread.
Writes are serialised behind one asyncio lock and run inside a transaction;
reads go straight through since WAL lets them overlap the writer. Calls that
hit "database is locked" are retried a few times with exponential backoff.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

import peewee
from playhouse.sqlite_ext import SqliteExtDatabase

from linkhive.db.models import ALL_MODELS, database_proxy
from linkhive.utils.retry_utils import calculate_backoff_delay

if TYPE_CHECKING:
    from collections.abc import Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)

_CACHE_PRAGMAS = {
    "journal_mode": "wal",
    "synchronous": "normal",
    "foreign_keys": 1,
    "busy_timeout": 2000,
}


def _is_lock_contention(exc: peewee.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


@dataclass
class DatabaseSessionManager:
    """Owns the cache database file and the thread hop for every query.

    Attributes:
        path: SQLite file, or ``:memory:``
        operation_timeout: Seconds before a single call is abandoned
        max_retries: Extra attempts after lock contention
    """

    path: str
    operation_timeout: float = 10.0
    max_retries: int = 3
    _database: SqliteExtDatabase = field(init=False, repr=False)
    _write_lock: asyncio.Lock = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._database = SqliteExtDatabase(
            self.path, pragmas=_CACHE_PRAGMAS, check_same_thread=False
        )
        database_proxy.initialize(self._database)
        self._write_lock = asyncio.Lock()

    @property
    def database(self) -> SqliteExtDatabase:
        return self._database

    @property
    def display_name(self) -> str:
        return Path(self.path).name or self.path

    def migrate(self) -> None:
        """Create the cache tables when missing."""
        with self._database.connection_context():
            self._database.create_tables(ALL_MODELS, safe=True)
        logger.info("cache_db_migrated", extra={"db": self.display_name})

    def close(self) -> None:
        if not self._database.is_closed():
            self._database.close()
            logger.debug("cache_db_closed", extra={"db": self.display_name})

    async def run_read(self, query: Callable[[], T], *, operation_name: str) -> T:
        return await self._run(query, operation_name, write=False)

    async def run_write(self, statement: Callable[[], T], *, operation_name: str) -> T:
        """Run ``statement`` in a transaction, one writer at a time."""

        def transactional() -> T:
            with self._database.atomic():
                return statement()

        async with self._write_lock:
            return await self._run(transactional, operation_name, write=True)

    async def _run(self, func: Callable[[], T], operation_name: str, *, write: bool) -> T:
        def in_connection() -> T:
            with self._database.connection_context():
                return func()

        attempt = 0
        while True:
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(in_connection), timeout=self.operation_timeout
                )
            except TimeoutError:
                logger.error(
                    "cache_db_timeout",
                    extra={
                        "operation": operation_name,
                        "timeout": self.operation_timeout,
                        "write": write,
                    },
                )
                raise
            except peewee.OperationalError as exc:
                if not _is_lock_contention(exc) or attempt >= self.max_retries:
                    logger.error(
                        "cache_db_error",
                        extra={"operation": operation_name, "attempts": attempt + 1, "error": str(exc)},
                    )
                    raise
                attempt += 1
                delay = calculate_backoff_delay(attempt - 1, base_delay=0.05, max_delay=1.0)
                logger.warning(
                    "cache_db_locked_retrying",
                    extra={"operation": operation_name, "retry": attempt, "delay": delay},
                )
                await asyncio.sleep(delay)
