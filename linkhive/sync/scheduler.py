"""Throttle/debounce scheduler for full synchronizations.

Each entity kind owns one scheduler. At most one synchronization of the kind
runs at a time; non-forced requests are dropped while one is in flight or
while the throttle window since the last sync start has not elapsed, and the
surviving requests are coalesced into a single trailing-edge debounce timer.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from enum import Enum
from typing import TYPE_CHECKING

from linkhive.sync.constants import DEFAULT_DEBOUNCE_WINDOW_SECONDS, DEFAULT_THROTTLE_WINDOW_SECONDS

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from linkhive.sync.state import SyncState

logger = logging.getLogger(__name__)


class RefreshDecision(str, Enum):
    """Outcome of a refresh request."""

    EXECUTED = "executed"
    SCHEDULED = "scheduled"
    DROPPED_IN_FLIGHT = "dropped_in_flight"
    DROPPED_THROTTLED = "dropped_throttled"
    DROPPED_STOPPED = "dropped_stopped"


class SyncScheduler:
    """Decides when a full synchronization of one entity kind may run."""

    def __init__(
        self,
        state: SyncState,
        sync_fn: Callable[[], Awaitable[None]],
        *,
        throttle_window: float = DEFAULT_THROTTLE_WINDOW_SECONDS,
        debounce_window: float = DEFAULT_DEBOUNCE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._state = state
        self._sync_fn = sync_fn
        self._throttle_window = throttle_window
        self._debounce_window = debounce_window
        self._clock = clock
        self._timer: asyncio.Task[None] | None = None
        self._timer_armed_at: float | None = None
        self._last_sync_started_at: float | None = None
        self._stopped = False

    @property
    def entity_kind(self) -> str:
        return self._state.entity_kind.value

    @property
    def last_sync_started_at(self) -> float | None:
        return self._last_sync_started_at

    def is_throttled(self) -> bool:
        if self._last_sync_started_at is None:
            return False
        return self._clock() - self._last_sync_started_at < self._throttle_window

    async def request_refresh(self, force: bool = False) -> RefreshDecision:
        """Request a synchronization.

        A forced request bypasses throttle and debounce and runs to completion
        before returning, unless another synchronization of the same kind is
        already in flight, in which case it is dropped.
        """
        if not force:
            return self.request_refresh_nowait()
        if self._stopped:
            return RefreshDecision.DROPPED_STOPPED
        if self._state.sync_in_flight:
            logger.debug(
                "sync_request_dropped",
                extra={"entity_kind": self.entity_kind, "reason": "in_flight", "forced": True},
            )
            return RefreshDecision.DROPPED_IN_FLIGHT
        await self._run_sync(trigger="forced")
        return RefreshDecision.EXECUTED

    def request_refresh_nowait(self) -> RefreshDecision:
        """Non-forced request: drop, or (re)arm the debounce timer."""
        if self._stopped:
            return RefreshDecision.DROPPED_STOPPED
        if self._state.sync_in_flight:
            reason = RefreshDecision.DROPPED_IN_FLIGHT
        elif self.is_throttled():
            reason = RefreshDecision.DROPPED_THROTTLED
        else:
            self._arm_timer()
            return RefreshDecision.SCHEDULED
        logger.debug(
            "sync_request_dropped",
            extra={"entity_kind": self.entity_kind, "reason": reason.value, "forced": False},
        )
        return reason

    def _arm_timer(self) -> None:
        rearmed = self._cancel_timer()
        self._timer_armed_at = self._clock()
        self._timer = asyncio.get_running_loop().create_task(
            self._fire_after_debounce(), name=f"sync-debounce-{self.entity_kind}"
        )
        logger.debug(
            "sync_debounce_armed",
            extra={
                "entity_kind": self.entity_kind,
                "debounce_window": self._debounce_window,
                "rearmed": rearmed,
            },
        )

    def _cancel_timer(self) -> bool:
        timer = self._timer
        self._timer = None
        self._timer_armed_at = None
        if timer is None or timer.done() or timer is asyncio.current_task():
            return False
        timer.cancel()
        return True

    async def _fire_after_debounce(self) -> None:
        await asyncio.sleep(self._debounce_window)
        if self._timer is asyncio.current_task():
            self._timer = None
            self._timer_armed_at = None

        # Conditions may have changed while the timer was pending
        if self._stopped:
            return
        if self._state.sync_in_flight or self.is_throttled():
            logger.debug(
                "sync_debounce_expired_dropped",
                extra={
                    "entity_kind": self.entity_kind,
                    "in_flight": self._state.sync_in_flight,
                },
            )
            return
        try:
            await self._run_sync(trigger="debounced")
        except Exception:
            logger.exception("sync_debounced_run_failed", extra={"entity_kind": self.entity_kind})

    async def _run_sync(self, *, trigger: str) -> None:
        # The in-flight flag is set before the first await so concurrent
        # requests observe it.
        self._state.sync_in_flight = True
        started_at = self._clock()
        self._last_sync_started_at = started_at
        logger.info("sync_started", extra={"entity_kind": self.entity_kind, "trigger": trigger})
        try:
            await self._sync_fn()
        finally:
            self._state.sync_in_flight = False
            # A timer armed before this run is superseded by it
            if self._timer_armed_at is not None and self._timer_armed_at <= started_at:
                self._cancel_timer()
            logger.info(
                "sync_finished",
                extra={
                    "entity_kind": self.entity_kind,
                    "trigger": trigger,
                    "latency_ms": round((self._clock() - started_at) * 1000, 2),
                },
            )

    async def shutdown(self) -> None:
        """Cancel any pending timer and refuse further requests."""
        self._stopped = True
        timer = self._timer
        self._cancel_timer()
        if timer is not None and timer is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await timer

    def reopen(self) -> None:
        self._stopped = False
        self._last_sync_started_at = None
