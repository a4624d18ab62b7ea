"""In-process registry of realtime change channels.

The realtime transport (a websocket client owned by the host application)
calls ``dispatch`` for every ``postgres_changes`` event it receives; the
registry forwards the event kind to the callbacks subscribed to the matching
``<table>:user_id=eq.<user>`` channel. Dispatch may happen on any thread.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from linkhive.domain.models import EntityKind

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class RemoteEventKind(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


def channel_name(user_id: str, entity_kind: EntityKind) -> str:
    return f"{EntityKind(entity_kind).value}:user_id=eq.{user_id}"


@dataclass(eq=False)
class ChannelSubscription:
    """Handle returned by ``subscribe``."""

    channel: str
    callback: Callable[[str], None]
    registry: RealtimeChannelRegistry | None = field(default=None, repr=False)
    token: int = 0

    def unsubscribe(self) -> None:
        if self.registry is not None:
            self.registry.unsubscribe(self)


class RealtimeChannelRegistry:
    """Maps channel names to change callbacks."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._channels: dict[str, list[ChannelSubscription]] = defaultdict(list)
        self._tokens = itertools.count(1)

    def subscribe(
        self, user_id: str, entity_kind: EntityKind, callback: Callable[[str], None]
    ) -> ChannelSubscription:
        name = channel_name(user_id, entity_kind)
        with self._lock:
            subscription = ChannelSubscription(
                channel=name, callback=callback, registry=self, token=next(self._tokens)
            )
            self._channels[name].append(subscription)
            total = len(self._channels[name])
        logger.debug("realtime_channel_subscribed", extra={"channel": name, "subscribers": total})
        return subscription

    def unsubscribe(self, subscription: ChannelSubscription) -> None:
        with self._lock:
            subscribers = self._channels.get(subscription.channel, [])
            try:
                subscribers.remove(subscription)
            except ValueError:
                logger.warning(
                    "realtime_subscription_not_found", extra={"channel": subscription.channel}
                )
                return
            if not subscribers:
                del self._channels[subscription.channel]
        logger.debug("realtime_channel_unsubscribed", extra={"channel": subscription.channel})

    def dispatch(
        self, entity_kind: EntityKind, event_kind: RemoteEventKind | str, user_id: str | None = None
    ) -> int:
        """Deliver one change event; returns how many callbacks were invoked.

        Without ``user_id`` the event goes to every channel of the table.
        """
        kind = EntityKind(entity_kind)
        event = RemoteEventKind(str(getattr(event_kind, "value", event_kind)).upper())
        with self._lock:
            if user_id is not None:
                targets = list(self._channels.get(channel_name(user_id, kind), []))
            else:
                prefix = f"{kind.value}:"
                targets = [
                    sub
                    for name, subs in self._channels.items()
                    if name.startswith(prefix)
                    for sub in subs
                ]

        for subscription in targets:
            try:
                subscription.callback(event.value)
            except Exception as exc:
                logger.exception(
                    "realtime_callback_failed",
                    extra={"channel": subscription.channel, "error": str(exc)},
                )
        return len(targets)

    def subscriber_count(self, user_id: str, entity_kind: EntityKind) -> int:
        with self._lock:
            return len(self._channels.get(channel_name(user_id, entity_kind), []))

    def clear(self) -> None:
        with self._lock:
            self._channels.clear()
