"""Transient-failure detection and async retry with jittered backoff."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING, TypeVar

import httpx

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures that mean "the other side could not be reached", whatever the message
_TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    httpx.TransportError,
    TimeoutError,
    ConnectionError,
)

# Message fragments seen in wrapped or re-raised connectivity failures
_TRANSIENT_MARKERS = (
    "timed out",
    "timeout",
    "connection",
    "network",
    "offline",
    "rate limit",
    "too many requests",
    "temporarily",
    "temporary",
    "unavailable",
    "bad gateway",
    "try again",
)


def is_transient_error(error: BaseException) -> bool:
    """True when ``error`` looks like lost connectivity, throttling or a 5xx hiccup.

    Exception type is checked first; otherwise the message and class name are
    scanned for known markers.
    """
    if isinstance(error, _TRANSIENT_TYPES):
        return True
    text = f"{type(error).__name__} {error}".lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def calculate_backoff_delay(
    attempt: int, base_delay: float, max_delay: float, jitter: float = 0.1
) -> float:
    """Delay before retry number ``attempt`` (0-indexed), capped, plus up to ``jitter`` of itself."""
    capped = min(max_delay, base_delay * 2**attempt)
    return capped * (1 + jitter * random.random())


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    *,
    should_retry: Callable[[Exception], bool],
    max_retries: int = 2,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    operation_name: str = "operation",
) -> T:
    """Await ``func`` up to ``max_retries + 1`` times.

    Only failures accepted by ``should_retry`` are retried; the last failure
    propagates unchanged so callers can classify it.
    """
    attempt = 0
    while True:
        try:
            return await func()
        except Exception as exc:
            retryable = should_retry(exc)
            if not retryable or attempt >= max_retries:
                if attempt:
                    logger.warning(
                        "retry_gave_up",
                        extra={
                            "operation": operation_name,
                            "attempts": attempt + 1,
                            "retryable": retryable,
                            "error": str(exc),
                        },
                    )
                raise
            delay = calculate_backoff_delay(attempt, base_delay, max_delay)
            attempt += 1
            logger.debug(
                "retry_scheduled",
                extra={"operation": operation_name, "attempt": attempt, "delay": round(delay, 3)},
            )
            await asyncio.sleep(delay)
