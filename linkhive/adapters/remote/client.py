"""Supabase (PostgREST) implementation of the remote store."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

from linkhive.adapters.remote.realtime import RealtimeChannelRegistry
from linkhive.core.logging_utils import truncate_log_content
from linkhive.domain.exceptions import RemoteStoreError
from linkhive.domain.models import EntityKind
from linkhive.utils.retry_utils import retry_with_backoff

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from typing import Self

    from linkhive.adapters.remote.realtime import ChannelSubscription
    from linkhive.config.remote import SupabaseConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

# HTTP status codes that should trigger a retry
RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

TABLE_COLLECTION_LINKS = "collection_links"

# Embedded joins requested with each full fetch
SELECT_CLAUSES: dict[EntityKind, str] = {
    EntityKind.LINKS: "*,tags:link_tags(tag:tags(*))",
    EntityKind.COLLECTIONS: "*,links:collection_links(link:links(*))",
}


def error_kind_for_status(status_code: int) -> str:
    """Map an HTTP status onto the remote store error kinds."""
    if status_code in RETRYABLE_STATUS_CODES or status_code >= 500:
        return "network"
    if status_code in (401, 403):
        return "auth"
    if status_code == 404:
        return "notFound"
    if 400 <= status_code < 500:
        return "validation"
    return "unknown"


def _is_retryable_error(exc: Exception) -> bool:
    if isinstance(exc, RemoteStoreError):
        return exc.kind == "network"
    return isinstance(exc, httpx.TransportError)


def _to_remote_error(exc: Exception, operation: str) -> RemoteStoreError:
    if isinstance(exc, RemoteStoreError):
        return exc
    if isinstance(exc, httpx.TransportError):
        return RemoteStoreError("network", f"{operation} failed: {exc}")
    return RemoteStoreError("unknown", f"{operation} failed: {exc}")


class SupabaseRemoteStore:
    """Async client for the links/collections tables of a Supabase project.

    Use as an async context manager. The bearer token is the signed-in user's
    access token when provided, otherwise the anon key.
    """

    def __init__(
        self,
        config: SupabaseConfig,
        access_token: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        realtime: RealtimeChannelRegistry | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            config: Supabase connection settings
            access_token: JWT of the signed-in user
            transport: Optional httpx transport (used by tests)
            realtime: Channel registry shared with the realtime transport
        """
        self.base_url = f"{config.url.rstrip('/')}/rest/v1"
        self.anon_key = config.anon_key
        self.access_token = access_token
        self.timeout = config.request_timeout_sec
        self.max_retries = config.max_retries
        self.retry_base_delay = config.retry_base_delay_sec
        self.retry_max_delay = config.retry_max_delay_sec
        self.realtime = realtime or RealtimeChannelRegistry()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> Self:
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "apikey": self.anon_key,
                "Authorization": f"Bearer {self.access_token or self.anon_key}",
                "Content-Type": "application/json",
                "Prefer": "return=representation",
            },
            timeout=self.timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = "Client not initialized. Use async context manager."
            raise RemoteStoreError("unknown", msg)
        return self._client

    async def _with_retry(self, func: Callable[[], Awaitable[T]], operation_name: str) -> T:
        try:
            return await retry_with_backoff(
                func,
                should_retry=_is_retryable_error,
                max_retries=self.max_retries,
                base_delay=self.retry_base_delay,
                max_delay=self.retry_max_delay,
                operation_name=operation_name,
            )
        except Exception as exc:
            raise _to_remote_error(exc, operation_name) from exc

    @staticmethod
    def _check(response: httpx.Response, operation: str) -> None:
        if response.is_success:
            return
        detail = truncate_log_content(response.text) or ""
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            detail = body.get("message") or body.get("hint") or detail
        kind = error_kind_for_status(response.status_code)
        raise RemoteStoreError(
            kind, f"{operation} failed ({response.status_code}): {detail}", response.status_code
        )

    @staticmethod
    def _single(response: httpx.Response, operation: str) -> dict[str, Any]:
        rows = response.json()
        if isinstance(rows, dict):
            return rows
        if not rows:
            raise RemoteStoreError("notFound", f"{operation} returned no row", response.status_code)
        return rows[0]

    async def fetch_all(self, user_id: str, entity_kind: EntityKind) -> list[dict[str, Any]]:
        kind = EntityKind(entity_kind)
        params = {
            "select": SELECT_CLAUSES[kind],
            "user_id": f"eq.{user_id}",
            "order": "created_at.desc",
        }

        async def _fetch() -> list[dict[str, Any]]:
            response = await self.client.get(f"/{kind.value}", params=params)
            self._check(response, f"fetch_{kind.value}")
            return response.json()

        rows = await self._with_retry(_fetch, f"fetch_{kind.value}")
        logger.debug(
            "supabase_fetched_all", extra={"entity_kind": kind.value, "count": len(rows)}
        )
        return rows

    async def create(
        self, user_id: str, entity_kind: EntityKind, payload: dict[str, Any]
    ) -> dict[str, Any]:
        kind = EntityKind(entity_kind)
        body = {**payload, "user_id": user_id}

        async def _create() -> dict[str, Any]:
            response = await self.client.post(f"/{kind.value}", json=body)
            self._check(response, f"create_{kind.value}")
            return self._single(response, f"create_{kind.value}")

        return await self._with_retry(_create, f"create_{kind.value}")

    async def update(
        self, user_id: str, entity_kind: EntityKind, entity_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        kind = EntityKind(entity_kind)
        params = {"id": f"eq.{entity_id}", "user_id": f"eq.{user_id}"}

        async def _update() -> dict[str, Any]:
            response = await self.client.patch(f"/{kind.value}", params=params, json=payload)
            self._check(response, f"update_{kind.value}")
            # PostgREST answers 200 with an empty list when no row matched
            return self._single(response, f"update_{kind.value}")

        return await self._with_retry(_update, f"update_{kind.value}")

    async def delete(self, user_id: str, entity_kind: EntityKind, entity_id: str) -> None:
        kind = EntityKind(entity_kind)
        params = {"id": f"eq.{entity_id}", "user_id": f"eq.{user_id}"}

        async def _delete() -> None:
            response = await self.client.delete(f"/{kind.value}", params=params)
            self._check(response, f"delete_{kind.value}")

        await self._with_retry(_delete, f"delete_{kind.value}")

    async def add_link_to_collection(self, user_id: str, link_id: str, collection_id: str) -> None:
        body = {"link_id": link_id, "collection_id": collection_id, "added_by": user_id}

        async def _add() -> None:
            response = await self.client.post(f"/{TABLE_COLLECTION_LINKS}", json=body)
            self._check(response, "add_link_to_collection")

        await self._with_retry(_add, "add_link_to_collection")

    async def remove_link_from_collection(self, link_id: str, collection_id: str) -> None:
        params = {"link_id": f"eq.{link_id}", "collection_id": f"eq.{collection_id}"}

        async def _remove() -> None:
            response = await self.client.delete(f"/{TABLE_COLLECTION_LINKS}", params=params)
            self._check(response, "remove_link_from_collection")

        await self._with_retry(_remove, "remove_link_from_collection")

    def subscribe(
        self, user_id: str, entity_kind: EntityKind, callback: Callable[[str], None]
    ) -> ChannelSubscription:
        return self.realtime.subscribe(user_id, entity_kind, callback)

    def unsubscribe(self, handle: ChannelSubscription) -> None:
        self.realtime.unsubscribe(handle)
