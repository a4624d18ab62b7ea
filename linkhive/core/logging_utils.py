"""Structured JSON logging for the sync engine.

Call sites log through ``logging.getLogger(__name__)`` with snake_case event
names and ``extra={...}``. ``setup_json_logging`` routes those records into
loguru's serialized sinks (or a stdlib JSON formatter), and every record
emitted inside a ``correlation_scope`` carries that scope's correlation id.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any

from loguru import logger as loguru_logger

if TYPE_CHECKING:
    from collections.abc import Iterator

UTC = dt.UTC

# LogRecord attributes that are never structured extras
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}

_TIMING_FIELDS = frozenset({"latency_ms", "duration_sec", "debounce_window", "timeout"})
_SYNC_FIELDS = frozenset(
    {
        "entity_kind",
        "entity_id",
        "operation",
        "operation_id",
        "decision",
        "trigger",
        "pending_count",
        "queue_size",
        "error_kind",
    }
)
_TOP_LEVEL_FIELDS = ("correlation_id", "user_id")

_correlation_id: ContextVar[str | None] = ContextVar("linkhive_correlation_id", default=None)


def generate_correlation_id() -> str:
    """Generate a short correlation ID for tracing one sync or replay run across logs."""
    return uuid.uuid4().hex[:12]


def current_correlation_id() -> str | None:
    return _correlation_id.get()


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """Bind a correlation id to every record logged in this context.

    Nested scopes reuse the outer id unless one is passed explicitly.
    """
    scoped = correlation_id or _correlation_id.get() or generate_correlation_id()
    token = _correlation_id.set(scoped)
    try:
        yield scoped
    finally:
        _correlation_id.reset(token)


class CorrelationIdFilter(logging.Filter):
    """Fill ``record.correlation_id`` from the active scope when the call site did not."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "correlation_id", None) is None:
            scoped = _correlation_id.get()
            if scoped is not None:
                record.correlation_id = scoped
        return True


def _structured_extras(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if not key.startswith("_") and key not in _RECORD_ATTRIBUTES
    }


class EnhancedJsonFormatter(logging.Formatter):
    """One JSON object per record, with sync and timing fields grouped."""

    def __init__(self, include_location: bool = True) -> None:
        super().__init__()
        self.include_location = include_location

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": dt.datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        if self.include_location:
            payload["location"] = f"{record.module}:{record.funcName}:{record.lineno}"

        groups: dict[str, dict[str, Any]] = {"sync": {}, "timing": {}, "extra": {}}
        for key, value in _structured_extras(record).items():
            if key in _TOP_LEVEL_FIELDS:
                if value is not None:
                    payload[key] = value
            elif key in _SYNC_FIELDS:
                groups["sync"][key] = value
            elif key in _TIMING_FIELDS:
                groups["timing"][key] = value
            else:
                groups["extra"][key] = value
        payload.update({name: fields for name, fields in groups.items() if fields})

        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(payload, ensure_ascii=False, default=_json_default, separators=(",", ":"))


def _json_default(obj: Any) -> str:
    if isinstance(obj, dt.datetime):
        return obj.isoformat()
    if hasattr(obj, "value"):
        return str(obj.value)
    return str(obj)


class _InterceptHandler(logging.Handler):
    """Bridge stdlib records (and their ``extra`` fields) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: int | str = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        loguru_logger.bind(logger_name=record.name, **_structured_extras(record)).opt(
            depth=6, exception=record.exc_info
        ).log(level, record.getMessage())


def setup_json_logging(
    level: str = "INFO",
    use_loguru: bool = True,
    log_file: str | None = None,
    max_file_size: str = "50 MB",
    retention: str = "14 days",
) -> None:
    """Configure JSON logging on the root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_loguru: Route stdlib records through loguru serialized sinks
        log_file: Optional log file path for persistent logging
        max_file_size: Rotation size for the log file (loguru format)
        retention: Log retention period (loguru format)
    """
    level = level.upper()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, level, logging.INFO))

    if use_loguru:
        loguru_logger.remove()
        loguru_logger.add(sys.stdout, level=level, serialize=True, enqueue=True, diagnose=False)
        if log_file:
            loguru_logger.add(
                log_file,
                level=level,
                serialize=True,
                rotation=max_file_size,
                retention=retention,
                compression="gz",
                enqueue=True,
            )
        handlers: list[logging.Handler] = [_InterceptHandler()]
    else:
        handlers = [logging.StreamHandler(sys.stdout)]
        if log_file:
            from logging.handlers import RotatingFileHandler

            handlers.append(
                RotatingFileHandler(log_file, maxBytes=50 * 1024 * 1024, backupCount=5)
            )
        for handler in handlers:
            handler.setFormatter(EnhancedJsonFormatter())

    for handler in handlers:
        handler.addFilter(CorrelationIdFilter())
        root.addHandler(handler)

    logging.getLogger(__name__).info(
        "json_logging_initialized",
        extra={"level": level, "log_file": log_file, "backend": "loguru" if use_loguru else "stdlib"},
    )


def truncate_log_content(content: str | None, max_length: int = 500) -> str | None:
    """Truncate large content (response bodies, payload reprs) for logging."""
    if not content or len(content) <= max_length:
        return content
    return content[:max_length] + "... [truncated]"


__all__ = [
    "CorrelationIdFilter",
    "EnhancedJsonFormatter",
    "correlation_scope",
    "current_correlation_id",
    "generate_correlation_id",
    "setup_json_logging",
    "truncate_log_content",
]
