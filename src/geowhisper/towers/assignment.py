"""Find-or-create assignment of content to towers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..models import ContentItem, LatLng
from ..stores.base import ContentStore
from .directory import TowerDirectory

logger = logging.getLogger(__name__)

CONTENT_COLLECTION = "content"

_UNSET = object()


@dataclass
class Assignment:
    """Result of placing one content item."""
    tower_id: str
    created: bool
    """True when a new tower was created for the item."""


async def assign_to_tower(
    directory: TowerDirectory,
    content_id: str,
    location: LatLng,
    radius_m: float,
) -> Assignment:
    """
    Join the nearest tower within ``radius_m`` or start a new one.

    Not atomic end to end: the lookup and the creation are separate store
    operations, so concurrent callers can both create a tower for the same
    spot (see :mod:`geowhisper.towers.directory`).
    """
    nearest = await directory.find_nearest(location, radius_m)
    if nearest is not None:
        await directory.add_member(nearest.id, content_id)
        logger.debug("Assigned %s to existing tower %s", content_id, nearest.id)
        return Assignment(tower_id=nearest.id, created=False)

    tower = await directory.create(location, radius_m, content_id)
    return Assignment(tower_id=tower.id, created=True)


async def set_content_tower(
    store: ContentStore,
    content_id: str,
    tower_id: Optional[str],
    *,
    expected: Any = _UNSET,
    max_attempts: Optional[int] = None,
) -> bool:
    """
    Point a content item at ``tower_id``.

    With ``expected`` given, the write only happens while the item's current
    ``tower_id`` equals it. Returns False when nothing was written (item
    missing, already pointing there, or expectation not met).
    """
    written = False

    def mutate(data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        nonlocal written
        written = False
        if data is None:
            return None
        current = data.get("tower_id")
        if expected is not _UNSET and current != expected:
            return None
        if current == tower_id:
            return None
        written = True
        return {**data, "tower_id": tower_id}

    await store.transactional_update(CONTENT_COLLECTION, content_id, mutate, max_attempts=max_attempts)
    return written


async def claim_content(store: ContentStore, item: ContentItem) -> ContentItem:
    """
    Write ``item`` unless the stored record already belongs to a tower.

    Returns the record as stored afterwards. When a concurrent submission of
    the same id got there first, its tower id wins and the caller must undo
    its own membership.
    """
    def mutate(data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if data is not None and data.get("tower_id") is not None:
            return None
        return item.to_document()

    doc = await store.transactional_update(CONTENT_COLLECTION, item.id, mutate)
    return ContentItem.from_document(doc.id, doc.data)


async def release_lost_claim(
    directory: TowerDirectory,
    content_id: str,
    assigned_tower_id: str,
    owner_tower_id: Optional[str],
) -> bool:
    """
    Drop ``content_id`` from the tower it was just added to when another
    tower owns the record. Returns True when a membership was undone.
    """
    if owner_tower_id == assigned_tower_id:
        return False
    logger.info(
        "Content %s is owned by tower %s; removing it from tower %s",
        content_id, owner_tower_id, assigned_tower_id,
    )
    await directory.remove_member(assigned_tower_id, content_id)
    return True
