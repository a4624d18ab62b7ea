"""In-memory sync state for one entity kind of one signed-in user."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime  # noqa: TC003
from typing import TYPE_CHECKING

from linkhive.domain.models import (
    CacheSnapshot,
    EntityKind,
    OperationKind,
    PendingOperation,
    SyncEntity,
)

if TYPE_CHECKING:
    from linkhive.domain.exceptions import ErrorKind, SyncError


@dataclass
class SyncState:
    """Session-scoped view of one entity collection.

    ``entities`` is ordered most-recent-first. ``inflight`` maps entity ids to
    the mutation whose remote confirmation is outstanding; ``id_aliases`` maps
    temporary markers to the ids the remote store assigned to them.
    ``confirmed`` remembers, per entity id, the sequence number and kind of
    the latest mutation the remote store acknowledged, so a full sync can
    tell which acknowledgements its fetched rows may predate.
    """

    entity_kind: EntityKind
    entities: list[SyncEntity] = field(default_factory=list)
    last_sync_timestamp: datetime | None = None
    sync_in_flight: bool = False
    loading: bool = False
    last_error: ErrorKind | None = None
    last_error_message: str | None = None
    pending_operations: list[PendingOperation] = field(default_factory=list)
    inflight: dict[str, OperationKind] = field(default_factory=dict)
    id_aliases: dict[str, str] = field(default_factory=dict)
    mutation_seq: int = 0
    confirmed: dict[str, tuple[int, OperationKind]] = field(default_factory=dict)

    def resolve_id(self, entity_id: str) -> str:
        seen: set[str] = set()
        while entity_id in self.id_aliases and entity_id not in seen:
            seen.add(entity_id)
            entity_id = self.id_aliases[entity_id]
        return entity_id

    def index_of(self, entity_id: str) -> int | None:
        for index, entity in enumerate(self.entities):
            if entity.id == entity_id:
                return index
        return None

    def find(self, entity_id: str) -> SyncEntity | None:
        index = self.index_of(self.resolve_id(entity_id))
        return None if index is None else self.entities[index]

    def mark_confirmed(self, entity_id: str, kind: OperationKind) -> None:
        self.mutation_seq += 1
        self.confirmed[entity_id] = (self.mutation_seq, kind)

    def confirmed_since(self, seq: int) -> dict[str, OperationKind]:
        return {
            entity_id: kind for entity_id, (mark, kind) in self.confirmed.items() if mark > seq
        }

    def forget_confirmed(self, up_to: int) -> None:
        self.confirmed = {
            entity_id: entry for entity_id, entry in self.confirmed.items() if entry[0] > up_to
        }

    def record_error(self, error: SyncError) -> None:
        self.last_error = error.kind
        self.last_error_message = error.message

    def clear_error(self) -> None:
        self.last_error = None
        self.last_error_message = None

    def snapshot(self) -> CacheSnapshot:
        return CacheSnapshot.from_entities(
            self.entity_kind, list(self.entities), self.last_sync_timestamp
        )

    def restore(self, snapshot: CacheSnapshot) -> None:
        self.entities = snapshot.to_entities()
        self.last_sync_timestamp = snapshot.last_sync_timestamp

    def reset(self) -> None:
        self.entities = []
        self.last_sync_timestamp = None
        self.sync_in_flight = False
        self.loading = False
        self.pending_operations = []
        self.inflight.clear()
        self.id_aliases.clear()
        self.confirmed.clear()
        self.clear_error()
