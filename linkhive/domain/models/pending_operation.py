"""Pending operation model.

A pending operation records a mutation that could not reach the remote store
so it can be replayed, in enqueue order, once connectivity returns.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from linkhive.core.time_utils import utc_now
from linkhive.domain.models.entity import EntityKind


class OperationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class PendingOperation(BaseModel):
    """Durable record of a mutation awaiting replay."""

    model_config = ConfigDict(frozen=True)

    id: int
    kind: OperationKind
    entity_kind: EntityKind
    target_id: str | None = None
    local_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    enqueued_at: datetime = Field(default_factory=utc_now)

    @property
    def entity_ref(self) -> str | None:
        """Id the operation is about: the remote id, or the temporary marker for a Create."""
        return self.target_id or self.local_id

    def describe(self) -> str:
        return f"{self.kind.value}:{self.entity_kind.value}:{self.entity_ref}"
