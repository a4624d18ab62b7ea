from linkhive.domain.exceptions.sync_errors import (
    AuthError,
    ConflictError,
    ErrorKind,
    NetworkError,
    RemoteStoreError,
    StorageError,
    SyncError,
    UnknownRemoteError,
    ValidationError,
    classify_error,
)

__all__ = [
    "AuthError",
    "ConflictError",
    "ErrorKind",
    "NetworkError",
    "RemoteStoreError",
    "StorageError",
    "SyncError",
    "UnknownRemoteError",
    "ValidationError",
    "classify_error",
]
