"""
Persistent tower registry.

Towers live in the ``towers`` collection of a :class:`ContentStore`. Member
updates go through the store's optimistic transaction so that concurrent
adds and removes against one tower never lose an update.

Known race (kept on purpose): :meth:`TowerDirectory.find_nearest` followed by
:meth:`TowerDirectory.create` is not atomic. Two submissions near an
unclaimed spot can both miss each other's tower and both create one. The
duplicates are merged later by
:meth:`geowhisper.towers.maintenance.TowerMaintenance.reconcile_duplicate_towers`.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import numpy as np

from ..errors import NotFoundError
from ..models import LatLng, Tower, utc_now
from ..spatial.geo import distances_from, validate_identifier, validate_location, validate_radius
from ..stores.base import ContentStore
from ..tools.config_loader import TowerSettings
from ..tools.retry import retry_read

logger = logging.getLogger(__name__)

TOWERS_COLLECTION = "towers"


class TowerDirectory:
    """
    Create, look up and update towers.

    Args:
        store: Content store holding the ``towers`` collection
        settings: Tower settings (update attempts, backoff)
        read_retries: Attempts for read operations on transient failures
    """

    def __init__(
        self,
        store: ContentStore,
        settings: Optional[TowerSettings] = None,
        read_retries: int = 3,
    ):
        self.store = store
        self.settings = settings or TowerSettings()
        self.read_retries = read_retries

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_by_id(self, tower_id: str) -> Optional[Tower]:
        doc = await retry_read(
            lambda: self.store.get(TOWERS_COLLECTION, tower_id),
            attempts=self.read_retries,
            description=f"get tower {tower_id}",
        )
        if doc is None:
            return None
        return Tower.from_document(doc.id, doc.data)

    async def require(self, tower_id: str) -> Tower:
        """Like :meth:`get_by_id` but raises :class:`NotFoundError`."""
        validate_identifier(tower_id, "tower_id")
        tower = await self.get_by_id(tower_id)
        if tower is None:
            raise NotFoundError("tower", tower_id)
        return tower

    async def list_all(self) -> List[Tower]:
        """All towers, largest first (then oldest, then lowest id)."""
        docs = await retry_read(
            lambda: self.store.list_documents(TOWERS_COLLECTION),
            attempts=self.read_retries,
            description="list towers",
        )
        towers = [Tower.from_document(doc.id, doc.data) for doc in docs]
        towers.sort(key=lambda t: (-t.member_count, t.created_at, t.id))
        return towers

    async def find_nearest(self, location: LatLng, radius_m: float) -> Optional[Tower]:
        """
        Closest tower whose anchor is within ``radius_m`` of ``location``.

        Linear scan over every tower. Equidistant candidates resolve to the
        lowest tower id.
        """
        location = validate_location(location)
        radius = validate_radius(radius_m)

        towers = await self.list_all()
        if not towers:
            return None

        dist = distances_from(
            location.lat,
            location.lng,
            np.array([t.anchor.lat for t in towers]),
            np.array([t.anchor.lng for t in towers]),
        )
        candidates = [(float(d), t.id, t) for d, t in zip(dist, towers) if d <= radius]
        if not candidates:
            return None

        _distance, _tower_id, nearest = min(candidates, key=lambda c: (c[0], c[1]))
        return nearest

    async def towers_in_area(self, center: LatLng, radius_m: float) -> List[Tower]:
        """Towers whose anchor lies within ``radius_m`` of ``center``, nearest first."""
        center = validate_location(center)
        radius = validate_radius(radius_m)

        towers = await self.list_all()
        if not towers:
            return []
        dist = distances_from(
            center.lat,
            center.lng,
            np.array([t.anchor.lat for t in towers]),
            np.array([t.anchor.lng for t in towers]),
        )
        in_area = sorted(
            ((float(d), t) for d, t in zip(dist, towers) if d <= radius),
            key=lambda pair: (pair[0], pair[1].id),
        )
        return [t for _d, t in in_area]

    # ------------------------------------------------------------------
    # Writes (never retried blindly)
    # ------------------------------------------------------------------

    async def create(self, location: LatLng, radius_m: float, first_member_id: str) -> Tower:
        """Create a tower anchored at ``location`` holding ``first_member_id``."""
        location = validate_location(location)
        radius = validate_radius(radius_m)
        validate_identifier(first_member_id, "first_member_id")

        tower_id = await self.store.new_id(TOWERS_COLLECTION)
        now = utc_now()
        tower = Tower(
            id=tower_id,
            anchor=location,
            radius_m=radius,
            member_ids=[first_member_id],
            created_at=now,
            updated_at=now,
        )
        await self.store.put(TOWERS_COLLECTION, tower_id, tower.to_document())

        logger.info(
            "Created tower %s at (%.6f, %.6f) radius=%.0fm for %s",
            tower_id, location.lat, location.lng, radius, first_member_id,
        )
        return tower

    async def _update_members(self, tower_id: str, member_id: str, add: bool) -> Tower:
        validate_identifier(tower_id, "tower_id")
        validate_identifier(member_id, "member_id")

        def mutate(data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            if data is None:
                raise NotFoundError("tower", tower_id)
            member_ids = list(data.get("member_ids") or [])
            present = member_id in member_ids
            if add == present:
                return None
            if add:
                member_ids.append(member_id)
            else:
                member_ids.remove(member_id)
            return {**data, "member_ids": member_ids, "member_count": len(member_ids), "updated_at": utc_now()}

        doc = await self.store.transactional_update(
            TOWERS_COLLECTION,
            tower_id,
            mutate,
            max_attempts=self.settings.max_update_attempts,
            deadline_s=self.settings.update_deadline_s,
            backoff_s=self.settings.conflict_backoff_s,
            max_backoff_s=self.settings.max_conflict_backoff_s,
        )
        if doc is None:
            raise NotFoundError("tower", tower_id)
        return Tower.from_document(doc.id, doc.data)

    async def add_member(self, tower_id: str, member_id: str) -> Tower:
        """Append ``member_id`` unless already present. Atomic per tower."""
        return await self._update_members(tower_id, member_id, add=True)

    async def remove_member(self, tower_id: str, member_id: str) -> Tower:
        """
        Drop ``member_id`` if present. Atomic per tower.

        The tower is kept even when its last member leaves.
        """
        tower = await self._update_members(tower_id, member_id, add=False)
        if tower.member_count == 0:
            logger.info("Tower %s has no members left; keeping it", tower_id)
        return tower

    async def delete(self, tower_id: str) -> bool:
        """Remove a tower outright. Used by maintenance only."""
        deleted = await self.store.delete(TOWERS_COLLECTION, tower_id)
        if deleted:
            logger.info("Deleted tower %s", tower_id)
        return deleted
