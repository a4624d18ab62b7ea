"""Offline-first synchronization of links and collections."""

from linkhive.sync.engine import SyncEngine
from linkhive.sync.mutations import MutationResult
from linkhive.sync.pending_queue import ReplayResult
from linkhive.sync.scheduler import RefreshDecision

__all__ = [
    "MutationResult",
    "RefreshDecision",
    "ReplayResult",
    "SyncEngine",
]
