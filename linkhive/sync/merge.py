"""Merge a freshly fetched remote collection with unconfirmed local changes."""

from __future__ import annotations

from typing import TYPE_CHECKING

from linkhive.domain.models import OperationKind

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from linkhive.domain.models import PendingOperation, SyncEntity


def _ids_with(
    kind: OperationKind,
    pending_operations: Iterable[PendingOperation],
    inflight: Mapping[str, OperationKind],
) -> set[str]:
    ids = {op.entity_ref for op in pending_operations if op.kind == kind and op.entity_ref}
    ids.update(entity_id for entity_id, op_kind in inflight.items() if op_kind == kind)
    return ids


def merge_remote_snapshot(
    remote_entities: list[SyncEntity],
    local_entities: list[SyncEntity],
    *,
    pending_operations: Iterable[PendingOperation] = (),
    inflight: Mapping[str, OperationKind] | None = None,
    confirmed: Mapping[str, OperationKind] | None = None,
) -> list[SyncEntity]:
    """Return the collection a full synchronization should install.

    Remote data wins except where the local side holds a mutation the remote
    store has not confirmed yet:

    - entities with a queued or in-flight Delete stay hidden,
    - entities with a queued or in-flight Update keep their local attributes,
    - entities still carrying a temporary marker stay at the head, in order.

    ``confirmed`` lists mutations acknowledged after the fetch started. The
    fetched rows predate them, so acknowledged deletes stay hidden and
    acknowledged creates and updates keep their local version, even when the
    row is missing from the fetch.
    """
    pending_operations = list(pending_operations)
    inflight = inflight or {}
    confirmed = confirmed or {}
    deleted = _ids_with(OperationKind.DELETE, pending_operations, inflight)
    updated = _ids_with(OperationKind.UPDATE, pending_operations, inflight)
    acknowledged: set[str] = set()
    for entity_id, kind in confirmed.items():
        (deleted if kind == OperationKind.DELETE else acknowledged).add(entity_id)
    updated |= acknowledged - deleted
    local_by_id = {entity.id: entity for entity in local_entities}

    merged: list[SyncEntity] = []
    for entity in remote_entities:
        if entity.id in deleted:
            continue
        local = local_by_id.get(entity.id)
        if entity.id in updated and local is not None:
            merged.append(local)
        else:
            merged.append(entity)

    remote_ids = {entity.id for entity in remote_entities}
    unconfirmed = [entity for entity in local_entities if entity.is_temporary]
    # Acknowledged after the fetch read its rows
    newer = [
        entity
        for entity in local_entities
        if entity.id in acknowledged and entity.id not in remote_ids and entity.id not in deleted
    ]
    return unconfirmed + newer + merged
