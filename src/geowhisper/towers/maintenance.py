"""
Batch maintenance of the tower set.

- migrate content that never got a tower
- rebuild every tower from scratch
- merge duplicate towers left behind by the find-or-create race

These are operator tasks meant for quiet periods. They are idempotent but
not isolated from concurrent submissions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List

from pydantic import ValidationError as PydanticValidationError

from ..errors import GeoWhisperError
from ..models import ContentItem, Tower
from ..spatial.geo import distance_between
from ..stores.base import ContentStore
from .assignment import CONTENT_COLLECTION, assign_to_tower, release_lost_claim, set_content_tower
from .directory import TowerDirectory

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class MigrationStats:
    candidates: int = 0
    processed: int = 0
    towers_created: int = 0
    assigned_to_existing: int = 0
    errors: int = 0
    towers_deleted: int = 0
    """Only set by a rebuild."""


@dataclass
class ReconciliationReport:
    towers_examined: int = 0
    merged: Dict[str, str] = field(default_factory=dict)
    """Duplicate tower id -> surviving tower id."""

    members_moved: int = 0


class TowerMaintenance:
    """
    Migration, rebuild and reconciliation over one store.

    Args:
        directory: Tower directory to operate on
        store: Content store holding the ``content`` collection
        radius_m: Assignment radius used for migrated content
    """

    def __init__(self, directory: TowerDirectory, store: ContentStore, radius_m: float):
        self.directory = directory
        self.store = store
        self.radius_m = radius_m

    async def migrate_unassigned_content(self) -> MigrationStats:
        """Assign a tower to every content item that has none, newest first."""
        docs = await self.store.query_by_field(CONTENT_COLLECTION, "tower_id", None)
        stats = MigrationStats(candidates=len(docs))
        logger.info("Found %d content items without a tower to migrate", len(docs))

        items: List[ContentItem] = []
        for doc in docs:
            try:
                items.append(ContentItem.from_document(doc.id, doc.data))
            except PydanticValidationError as exc:
                logger.warning("Content %s is malformed, skipping: %s", doc.id, exc)
                stats.errors += 1
        items.sort(key=lambda item: item.created_at or _EPOCH, reverse=True)

        for item in items:
            try:
                assignment = await assign_to_tower(self.directory, item.id, item.location, self.radius_m)
                if not await set_content_tower(self.store, item.id, assignment.tower_id, expected=None):
                    owner = await self.store.get(CONTENT_COLLECTION, item.id)
                    await release_lost_claim(
                        self.directory,
                        item.id,
                        assignment.tower_id,
                        owner.data.get("tower_id") if owner is not None else None,
                    )
            except GeoWhisperError as exc:
                logger.error("Error migrating content %s: %s", item.id, exc)
                stats.errors += 1
                continue

            stats.processed += 1
            if assignment.created:
                stats.towers_created += 1
            else:
                stats.assigned_to_existing += 1

            if stats.processed % 10 == 0:
                logger.info("Migration progress: %d/%d items processed", stats.processed, len(items))

        logger.info(
            "Tower migration finished: %d processed, %d towers created, %d joined existing, %d errors",
            stats.processed, stats.towers_created, stats.assigned_to_existing, stats.errors,
        )
        return stats

    async def rebuild_towers(self) -> MigrationStats:
        """Delete every tower, clear every content item's tower, then migrate."""
        logger.warning("Rebuilding all towers; existing tower data will be deleted")

        towers = await self.directory.list_all()
        for tower in towers:
            await self.directory.delete(tower.id)
        logger.info("Deleted %d existing towers", len(towers))

        cleared = 0
        for doc in await self.store.list_documents(CONTENT_COLLECTION):
            if doc.data.get("tower_id") is not None:
                if await set_content_tower(self.store, doc.id, None):
                    cleared += 1
        logger.info("Cleared tower id from %d content items", cleared)

        stats = await self.migrate_unassigned_content()
        stats.towers_deleted = len(towers)
        return stats

    async def reconcile_duplicate_towers(self) -> ReconciliationReport:
        """
        Merge towers whose anchor lies inside an older tower's radius.

        Towers are visited oldest first. The older tower survives, receives
        the duplicate's members, and the members' content is re-pointed to
        it before the duplicate is deleted. Running it again is a no-op.
        """
        towers = await self.directory.list_all()
        towers.sort(key=lambda t: (t.created_at, t.id))
        report = ReconciliationReport(towers_examined=len(towers))
        absorbed = set()

        for i, survivor in enumerate(towers):
            if survivor.id in absorbed:
                continue
            for candidate in towers[i + 1:]:
                if candidate.id in absorbed:
                    continue
                if distance_between(survivor.anchor, candidate.anchor) > survivor.radius_m:
                    continue
                report.members_moved += await self._merge(survivor, candidate)
                report.merged[candidate.id] = survivor.id
                absorbed.add(candidate.id)

        if report.merged:
            logger.info(
                "Reconciled %d duplicate tower(s), moved %d member(s)",
                len(report.merged), report.members_moved,
            )
        return report

    async def _merge(self, survivor: Tower, duplicate: Tower) -> int:
        current = await self.directory.get_by_id(duplicate.id)
        if current is None:
            return 0

        for member_id in current.member_ids:
            await self.directory.add_member(survivor.id, member_id)
            await set_content_tower(self.store, member_id, survivor.id)

        await self.directory.delete(duplicate.id)
        logger.info(
            "Merged tower %s (%d members) into %s",
            duplicate.id, current.member_count, survivor.id,
        )
        return current.member_count
