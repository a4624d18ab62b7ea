"""Remote change notifications feeding the sync scheduler."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from linkhive.domain.models import EntityKind

if TYPE_CHECKING:
    from linkhive.sync.protocols import RemoteStore, SubscriptionHandle
    from linkhive.sync.scheduler import RefreshDecision, SyncScheduler

logger = logging.getLogger(__name__)


class ChangeSubscriptionListener:
    """Subscribes to remote change events for one (user, kind) pair.

    Notifications may be delivered from any thread; they are marshalled onto
    the event loop that started the listener before reaching the scheduler.
    Events are never applied as deltas, only used as refresh triggers.
    """

    def __init__(
        self,
        remote: RemoteStore,
        user_id: str,
        entity_kind: EntityKind,
        scheduler: SyncScheduler,
    ) -> None:
        self._remote = remote
        self._user_id = user_id
        self._entity_kind = EntityKind(entity_kind)
        self._scheduler = scheduler
        self._loop: asyncio.AbstractEventLoop | None = None
        self._handle: SubscriptionHandle | None = None
        self._active = False
        self.events_received = 0

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> None:
        if self._active:
            return
        self._loop = asyncio.get_running_loop()
        self._handle = self._remote.subscribe(
            self._user_id, self._entity_kind, self._deliver
        )
        self._active = True
        logger.info(
            "change_subscription_started",
            extra={"user_id": self._user_id, "entity_kind": self._entity_kind.value},
        )

    def stop(self) -> None:
        if not self._active:
            return
        self._active = False
        handle, self._handle = self._handle, None
        if handle is not None:
            try:
                self._remote.unsubscribe(handle)
            except Exception as exc:
                logger.warning(
                    "change_subscription_stop_failed",
                    extra={"entity_kind": self._entity_kind.value, "error": str(exc)},
                )
        logger.info(
            "change_subscription_stopped",
            extra={"user_id": self._user_id, "entity_kind": self._entity_kind.value},
        )

    def _deliver(self, event_kind: str) -> None:
        loop = self._loop
        if not self._active or loop is None:
            return
        try:
            loop.call_soon_threadsafe(self.on_remote_change, self._entity_kind, event_kind)
        except RuntimeError:
            logger.debug(
                "change_event_after_loop_closed",
                extra={"entity_kind": self._entity_kind.value, "event_kind": event_kind},
            )

    def on_remote_change(
        self, entity_kind: EntityKind, event_kind: str
    ) -> RefreshDecision | None:
        """Turn a change event into a non-forced refresh request."""
        if not self._active:
            return None
        self.events_received += 1
        decision = self._scheduler.request_refresh_nowait()
        logger.debug(
            "remote_change_received",
            extra={
                "entity_kind": EntityKind(entity_kind).value,
                "event_kind": event_kind,
                "decision": decision.value,
            },
        )
        return decision
