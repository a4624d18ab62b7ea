"""Synchronized entity models.

Links and collections share identity fields (``id``, ``user_id``, timestamps)
and carry a kind-specific set of mutable attributes. Instances are treated as
immutable values: mutations produce validated copies.
"""

from __future__ import annotations

import uuid
from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from linkhive.core.time_utils import ensure_datetime

TEMP_ID_PREFIX = "local-"


class EntityKind(str, Enum):
    """Entity collections kept in sync, named after their remote tables."""

    LINKS = "links"
    COLLECTIONS = "collections"


def new_temporary_id() -> str:
    """Generate a temporary local marker for an entity the remote store has not seen yet."""
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


def is_temporary_id(entity_id: str | None) -> bool:
    return bool(entity_id) and str(entity_id).startswith(TEMP_ID_PREFIX)


class SyncEntity(BaseModel):
    """Base model for a synchronized record."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Identity and bookkeeping fields never travel in mutation payloads
    IDENTITY_FIELDS: ClassVar[frozenset[str]] = frozenset(
        {"id", "user_id", "created_at", "updated_at", "pending"}
    )
    # Fields computed by remote joins; read-only from the client's point of view
    READ_ONLY_FIELDS: ClassVar[frozenset[str]] = frozenset()

    id: str
    user_id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    pending: bool = False

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> str:
        if value is None or str(value).strip() == "":
            msg = "identifier cannot be empty"
            raise ValueError(msg)
        return str(value)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> datetime | None:
        return ensure_datetime(value)

    @property
    def is_temporary(self) -> bool:
        return is_temporary_id(self.id)

    @classmethod
    def writable_fields(cls) -> frozenset[str]:
        return frozenset(cls.model_fields) - cls.IDENTITY_FIELDS - cls.READ_ONLY_FIELDS

    @classmethod
    def clean_attributes(cls, attributes: dict[str, Any]) -> dict[str, Any]:
        """Keep only the attributes a client may write for this entity kind."""
        writable = cls.writable_fields()
        return {key: value for key, value in attributes.items() if key in writable}

    def attributes(self) -> dict[str, Any]:
        """Return the mutable attribute set in its JSON-compatible form."""
        return self.model_dump(mode="json", include=set(self.writable_fields()))

    def with_attributes(self, attributes: dict[str, Any], **identity: Any) -> SyncEntity:
        """Return a validated copy with ``attributes`` applied on top of this entity."""
        data = self.model_dump()
        data.update(self.clean_attributes(attributes))
        data.update(identity)
        return type(self).model_validate(data)

    def to_cache(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class Link(SyncEntity):
    """A saved URL with scraped metadata."""

    url: str = ""
    title: str = ""
    description: str | None = None
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    favicon_url: str | None = None
    image_url: str | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def _unwrap_tags(cls, value: Any) -> list[str]:
        """Accept plain tag names or the ``link_tags -> tags`` join shape."""
        if value in (None, ""):
            return []
        if isinstance(value, str):
            return [tag.strip() for tag in value.split(",") if tag.strip()]
        if not isinstance(value, list):
            msg = "tags must be a list"
            raise ValueError(msg)
        names: list[str] = []
        for item in value:
            if isinstance(item, dict):
                tag = item.get("tag", item)
                name = tag.get("name") if isinstance(tag, dict) else None
                if name:
                    names.append(str(name))
            elif item is not None:
                names.append(str(item))
        return names


class Collection(SyncEntity):
    """A named group of links."""

    READ_ONLY_FIELDS: ClassVar[frozenset[str]] = frozenset({"links"})

    name: str = ""
    description: str | None = None
    color: str | None = None
    links: list[Link] = Field(default_factory=list)

    @field_validator("links", mode="before")
    @classmethod
    def _unwrap_links(cls, value: Any) -> list[Any]:
        """Accept embedded links or the ``collection_links -> links`` join shape."""
        if not value:
            return []
        unwrapped: list[Any] = []
        for item in value:
            if isinstance(item, dict) and "link" in item:
                if item["link"]:
                    unwrapped.append(item["link"])
            else:
                unwrapped.append(item)
        return unwrapped

    @property
    def link_count(self) -> int:
        return len(self.links)


ENTITY_MODELS: dict[EntityKind, type[SyncEntity]] = {
    EntityKind.LINKS: Link,
    EntityKind.COLLECTIONS: Collection,
}


def entity_model(entity_kind: EntityKind) -> type[SyncEntity]:
    return ENTITY_MODELS[EntityKind(entity_kind)]
