"""Read-side helpers over the in-memory link collection."""

from __future__ import annotations

from typing import TYPE_CHECKING

from linkhive.domain.models import Link

if TYPE_CHECKING:
    from collections.abc import Iterable

    from linkhive.domain.models import SyncEntity


def _links(entities: Iterable[SyncEntity]) -> list[Link]:
    return [entity for entity in entities if isinstance(entity, Link)]


def search_links(entities: Iterable[SyncEntity], query: str) -> list[Link]:
    """Case-insensitive match on title, description, url and tag names."""
    needle = query.strip().lower()
    links = _links(entities)
    if not needle:
        return links
    matches = []
    for link in links:
        haystack = [link.title, link.description or "", link.url, *link.tags]
        if any(needle in value.lower() for value in haystack):
            matches.append(link)
    return matches


def filter_by_category(entities: Iterable[SyncEntity], category: str | None) -> list[Link]:
    links = _links(entities)
    if not category:
        return links
    return [link for link in links if link.category == category]


def get_categories(entities: Iterable[SyncEntity]) -> list[str]:
    """Distinct categories in first-seen order."""
    seen: dict[str, None] = {}
    for link in _links(entities):
        if link.category:
            seen.setdefault(link.category, None)
    return list(seen)
