from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


def _as_utc(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)


def ensure_datetime(value: Any) -> datetime | None:
    """Turn a PostgREST or cached timestamp into an aware datetime.

    Accepts datetimes and ISO-8601 strings (``Z`` suffix included). Naive
    values are taken as UTC; anything unparseable becomes ``None``.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    if not isinstance(value, str):
        logger.warning("timestamp_unexpected_type", extra={"type": type(value).__name__})
        return None
    try:
        return _as_utc(datetime.fromisoformat(value))
    except ValueError:
        logger.warning("timestamp_parse_failed", extra={"value": value[:64]})
        return None
