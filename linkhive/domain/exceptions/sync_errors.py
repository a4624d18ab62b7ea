"""Sync error taxonomy.

Every failure the engine reacts to is expressed as one of these exceptions.
Recoverable kinds (network, storage) are absorbed locally through the pending
queue or best-effort persistence; the others roll back optimistic state and
are surfaced through ``last_error``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar

from linkhive.utils.retry_utils import is_transient_error


class ErrorKind(str, Enum):
    NETWORK = "network"
    VALIDATION = "validation"
    AUTH = "auth"
    STORAGE = "storage"
    CONFLICT = "conflict"
    UNKNOWN = "unknown"


class SyncError(Exception):
    """Base exception for all sync errors."""

    kind: ClassVar[ErrorKind] = ErrorKind.UNKNOWN
    recoverable: ClassVar[bool] = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize sync error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NetworkError(SyncError):
    """No connectivity or the remote call timed out. Retried via the pending queue."""

    kind = ErrorKind.NETWORK
    recoverable = True


class ValidationError(SyncError):
    """The remote store rejected the payload."""

    kind = ErrorKind.VALIDATION


class AuthError(SyncError):
    """The session is no longer valid."""

    kind = ErrorKind.AUTH


class StorageError(SyncError):
    """Local cache I/O failed; the operation continues in memory."""

    kind = ErrorKind.STORAGE
    recoverable = True


class ConflictError(SyncError):
    """The entity no longer exists remotely or was modified concurrently."""

    kind = ErrorKind.CONFLICT


class UnknownRemoteError(SyncError):
    """Remote failure that could not be classified."""

    kind = ErrorKind.UNKNOWN


class RemoteStoreError(Exception):
    """Error raised by remote store collaborators.

    ``kind`` is one of ``network``, ``validation``, ``auth``, ``notFound`` or ``unknown``.
    """

    def __init__(self, kind: str, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


_REMOTE_KIND_MAP: dict[str, type[SyncError]] = {
    "network": NetworkError,
    "validation": ValidationError,
    "auth": AuthError,
    "notfound": ConflictError,
    "not_found": ConflictError,
    "conflict": ConflictError,
    "unknown": UnknownRemoteError,
}


def classify_error(exc: BaseException) -> SyncError:
    """Map any collaborator failure onto the sync error taxonomy."""
    if isinstance(exc, SyncError):
        return exc

    details: dict[str, Any] = {"error_type": type(exc).__name__}
    status_code = getattr(exc, "status_code", None)
    if status_code is not None:
        details["status_code"] = status_code

    remote_kind = getattr(exc, "kind", None)
    if isinstance(remote_kind, str):
        error_cls = _REMOTE_KIND_MAP.get(remote_kind.lower())
        if error_cls is not None:
            return error_cls(str(exc) or remote_kind, details)

    if isinstance(exc, TimeoutError | ConnectionError):
        return NetworkError(str(exc) or "remote call timed out", details)
    if is_transient_error(exc):
        return NetworkError(str(exc), details)
    return UnknownRemoteError(str(exc) or type(exc).__name__, details)
