from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime
from typing import Any

from pydantic import BaseModel, Field

from linkhive.domain.models.entity import EntityKind, SyncEntity, entity_model


class CacheSnapshot(BaseModel):
    """Last-known-good ordered entity collection of one kind, as stored in the cache."""

    entity_kind: EntityKind
    entities: list[dict[str, Any]] = Field(default_factory=list)
    last_sync_timestamp: datetime | None = None

    @classmethod
    def from_entities(
        cls,
        entity_kind: EntityKind,
        entities: list[SyncEntity],
        last_sync_timestamp: datetime | None = None,
    ) -> CacheSnapshot:
        return cls(
            entity_kind=entity_kind,
            entities=[entity.to_cache() for entity in entities],
            last_sync_timestamp=last_sync_timestamp,
        )

    def to_entities(self) -> list[SyncEntity]:
        model = entity_model(self.entity_kind)
        return [model.model_validate(item) for item in self.entities]
