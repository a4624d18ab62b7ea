from linkhive.domain.models.entity import (
    ENTITY_MODELS,
    Collection,
    EntityKind,
    Link,
    SyncEntity,
    entity_model,
    is_temporary_id,
    new_temporary_id,
)
from linkhive.domain.models.pending_operation import OperationKind, PendingOperation
from linkhive.domain.models.snapshot import CacheSnapshot

__all__ = [
    "CacheSnapshot",
    "ENTITY_MODELS",
    "Collection",
    "EntityKind",
    "Link",
    "OperationKind",
    "PendingOperation",
    "SyncEntity",
    "entity_model",
    "is_temporary_id",
    "new_temporary_id",
]
