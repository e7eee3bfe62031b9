"""
GeoWhisper tower engine facade.

Wires the components together around explicitly passed stores:

    settings = get_settings()
    service = create_service(settings)
    tower_id = await service.assign_tower("post-1", LatLng(lat=40.0, lng=-74.0))

No module-level state: every store handle is created once by the caller (or
:func:`create_service`) and threaded through the constructor.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional, Sequence

import numpy as np

from .errors import NotFoundError, ValidationError
from .models import (
    ActivityReport,
    ChatMessage,
    ContentItem,
    HotZoneRequest,
    HotZonesMap,
    LatLng,
    NearbyContent,
    Tower,
    TowerWithContent,
    utc_now,
)
from .proximity.gate import ProximityGate, ProximityResult
from .scoring.activity import ActivityScorer, to_epoch_ms
from .scoring.hot_zones import HotZoneAnalyzer
from .spatial.clustering import Cluster, cluster_content
from .spatial.geo import distances_from, validate_identifier, validate_location, validate_radius
from .stores.base import ContentStore, MessageFeedStore
from .stores.memory import InMemoryContentStore, InMemoryMessageFeed
from .stores.realtime_feed import RealtimeDatabaseFeed
from .tools.config_loader import EngineSettings, get_settings
from .tools.retry import retry_read
from .towers.assignment import CONTENT_COLLECTION, assign_to_tower, claim_content, release_lost_claim
from .towers.directory import TowerDirectory
from .towers.maintenance import MigrationStats, ReconciliationReport, TowerMaintenance

logger = logging.getLogger(__name__)

NEARBY_SCAN_LIMIT = 500
PHOTO_PLACEHOLDER = "📷 Photo"
RESERVED_CONTENT_FIELDS = frozenset({"id", "location", "tower_id"})


class GeoWhisperService:
    """
    Operations exposed to the surrounding application.

    Args:
        content_store: Store for towers and content items
        feed: Per-tower chat feed
        settings: Engine settings (defaults when omitted)
    """

    def __init__(
        self,
        content_store: ContentStore,
        feed: MessageFeedStore,
        settings: Optional[EngineSettings] = None,
    ):
        self.settings = settings or EngineSettings()
        self.content_store = content_store
        self.feed = feed

        self.directory = TowerDirectory(
            content_store, self.settings.towers, read_retries=self.settings.stores.read_retries
        )
        self.gate = ProximityGate(self.settings.proximity.interaction_radius_m)
        self.scorer = ActivityScorer(feed, self.settings.activity)
        self.hot_zone_analyzer = HotZoneAnalyzer(self.scorer, self.settings.activity)
        self.maintenance = TowerMaintenance(self.directory, content_store, self.settings.towers.radius_m)

    # ------------------------------------------------------------------
    # Tower assignment
    # ------------------------------------------------------------------

    async def assign_tower(self, content_id: str, location: LatLng) -> str:
        """Place ``content_id`` in the nearest tower or a new one; returns the tower id."""
        validate_identifier(content_id, "content_id")
        location = validate_location(location)
        assignment = await assign_to_tower(
            self.directory, content_id, location, self.settings.towers.radius_m
        )
        return assignment.tower_id

    async def submit_content(self, content_id: str, location: LatLng, **fields: Any) -> ContentItem:
        """
        Assign a tower to new content and persist the item with its tower id.

        Re-submitting an id that already has a tower returns the stored item
        unchanged; the tower id is never reassigned. When two submissions of
        one id race, the first to write the record wins and the other leaves
        the tower it joined.
        """
        validate_identifier(content_id, "content_id")
        location = validate_location(location)
        reserved = sorted(RESERVED_CONTENT_FIELDS.intersection(fields))
        if reserved:
            raise ValidationError(f"Reserved content fields cannot be set: {', '.join(reserved)}")

        existing = await self._get_content_doc(content_id)
        if existing is not None and existing.tower_id is not None:
            logger.info("Content %s already belongs to tower %s", content_id, existing.tower_id)
            return existing

        tower_id = await self.assign_tower(content_id, location)
        item = ContentItem(id=content_id, location=location, tower_id=tower_id, **fields)
        stored = await claim_content(self.content_store, item)
        await release_lost_claim(self.directory, content_id, tower_id, stored.tower_id)
        return stored

    async def remove_from_tower(self, tower_id: str, content_id: str) -> Tower:
        validate_identifier(content_id, "content_id")
        await self.directory.require(tower_id)
        return await self.directory.remove_member(tower_id, content_id)

    # ------------------------------------------------------------------
    # Tower queries
    # ------------------------------------------------------------------

    async def get_tower(self, tower_id: str) -> Tower:
        return await self.directory.require(tower_id)

    async def list_towers(self) -> List[Tower]:
        return await self.directory.list_all()

    async def towers_in_area(self, center: LatLng, radius_m: float) -> List[Tower]:
        return await self.directory.towers_in_area(center, radius_m)

    async def towers_with_content(self, max_items_per_tower: Optional[int] = None) -> List[TowerWithContent]:
        """Every non-empty tower with its content items, largest first."""
        grouped: List[TowerWithContent] = []
        for tower in await self.directory.list_all():
            if not tower.member_ids:
                continue
            member_ids = tower.member_ids
            if max_items_per_tower is not None:
                member_ids = member_ids[:max_items_per_tower]
            items = []
            for member_id in member_ids:
                item = await self._get_content_doc(member_id)
                if item is not None:
                    items.append(item)
            grouped.append(TowerWithContent(tower=tower, items=items))

        grouped.sort(key=lambda g: g.item_count, reverse=True)
        return grouped

    # ------------------------------------------------------------------
    # Content queries and ephemeral clustering
    # ------------------------------------------------------------------

    async def _get_content_doc(self, content_id: str) -> Optional[ContentItem]:
        doc = await retry_read(
            lambda: self.content_store.get(CONTENT_COLLECTION, content_id),
            attempts=self.settings.stores.read_retries,
            description=f"get content {content_id}",
        )
        return ContentItem.from_document(doc.id, doc.data) if doc is not None else None

    async def get_content(self, content_id: str) -> ContentItem:
        validate_identifier(content_id, "content_id")
        item = await self._get_content_doc(content_id)
        if item is None:
            raise NotFoundError("content", content_id)
        return item

    async def nearby_content(
        self,
        location: LatLng,
        radius_m: float,
        limit: int = 100,
    ) -> List[NearbyContent]:
        """
        Content within ``radius_m`` of ``location``, nearest first.

        Only the newest ``NEARBY_SCAN_LIMIT`` items are considered.
        """
        location = validate_location(location)
        radius = validate_radius(radius_m)

        docs = await retry_read(
            lambda: self.content_store.list_documents(CONTENT_COLLECTION),
            attempts=self.settings.stores.read_retries,
            description="list content",
        )
        items = [ContentItem.from_document(d.id, d.data) for d in docs]
        items.sort(key=lambda item: item.created_at, reverse=True)
        items = items[:NEARBY_SCAN_LIMIT]
        if not items:
            return []

        dist = distances_from(
            location.lat,
            location.lng,
            np.array([i.location.lat for i in items]),
            np.array([i.location.lng for i in items]),
        )
        nearby = [
            NearbyContent(item=item, distance_m=float(d))
            for item, d in zip(items, dist)
            if d <= radius
        ]
        nearby.sort(key=lambda n: n.distance_m)
        return nearby[:limit]

    def cluster_content(self, items: Sequence[ContentItem], radius_m: Optional[float] = None) -> List[Cluster]:
        """Ephemeral chain clustering of ``items`` (not persisted)."""
        cfg = self.settings.clustering
        return cluster_content(
            items,
            cfg.default_radius_m if radius_m is None else radius_m,
            max_items=cfg.max_items,
            h3_res=cfg.h3_res,
        )

    async def cluster_nearby(
        self,
        location: LatLng,
        search_radius_m: float,
        radius_m: Optional[float] = None,
    ) -> List[Cluster]:
        """Pull the content around ``location`` and cluster it for display."""
        nearby = await self.nearby_content(location, search_radius_m, limit=self.settings.clustering.max_items)
        return self.cluster_content([n.item for n in nearby], radius_m)

    # ------------------------------------------------------------------
    # Activity
    # ------------------------------------------------------------------

    async def score_activity(
        self,
        tower_id: str,
        window_hours: Optional[float] = None,
        threshold: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Optional[ActivityReport]:
        """Activity report for one tower; None below threshold or when the feed is unavailable."""
        tower = await self.directory.require(tower_id)
        cfg = self.settings.activity
        return await self.hot_zone_analyzer.report_for(
            tower,
            cfg.window_hours if window_hours is None else window_hours,
            cfg.message_threshold if threshold is None else threshold,
            now=now,
        )

    async def hot_zones(
        self,
        request: Optional[HotZoneRequest] = None,
        now: Optional[datetime] = None,
    ) -> HotZonesMap:
        request = request or HotZoneRequest(
            message_threshold=self.settings.activity.message_threshold,
            time_range_hours=self.settings.activity.window_hours,
        )
        towers = await self.directory.list_all()
        return await self.hot_zone_analyzer.hot_zones(towers, request, now=now)

    # ------------------------------------------------------------------
    # Proximity-gated actions
    # ------------------------------------------------------------------

    async def check_proximity(self, tower_id: str, user_location: LatLng) -> ProximityResult:
        tower = await self.directory.require(tower_id)
        result = self.gate.check(tower.anchor, user_location)
        logger.info(
            "User distance from tower %s: %.1fm - can interact: %s",
            tower_id, result.distance_m, result.allowed,
        )
        return result

    async def validate_interaction(
        self,
        tower_id: str,
        user_location: LatLng,
        action: str = "interact",
    ) -> ProximityResult:
        """Raise :class:`PermissionDeniedError` unless the user may act on the tower."""
        tower = await self.directory.require(tower_id)
        return self.gate.validate(tower.anchor, user_location, action=action, tower_id=tower_id)

    async def send_message(
        self,
        tower_id: str,
        user_id: str,
        username: str,
        text: Optional[str],
        user_location: LatLng,
        image: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ChatMessage:
        """Append a chat message after checking the sender is close enough."""
        validate_identifier(user_id, "user_id")
        if user_location is None:
            raise ValidationError("User location is required to send messages")
        user_location = validate_location(user_location)
        if not text and not image:
            raise ValidationError("A message needs text or an image")

        await self.validate_interaction(tower_id, user_location, action="send messages")

        message = ChatMessage(
            user_id=user_id,
            username=username or "Anonymous",
            text=text or PHOTO_PLACEHOLDER,
            timestamp=to_epoch_ms(now or utc_now()),
            image=image,
        )
        stored = await self.feed.append(tower_id, message)
        logger.info("Message sent to tower %s by user %s", tower_id, user_id)
        return stored

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def migrate_unassigned_content(self) -> MigrationStats:
        return await self.maintenance.migrate_unassigned_content()

    async def rebuild_towers(self) -> MigrationStats:
        return await self.maintenance.rebuild_towers()

    async def reconcile_duplicate_towers(self) -> ReconciliationReport:
        return await self.maintenance.reconcile_duplicate_towers()


def create_service(settings: Optional[EngineSettings] = None) -> GeoWhisperService:
    """
    Build a service with stores chosen from ``settings``.

    Uses the realtime database feed when ``stores.feed_url`` is configured,
    in-memory stores otherwise. Call once at process start.
    """
    settings = settings or get_settings()
    content_store = InMemoryContentStore()

    feed: MessageFeedStore
    if settings.stores.feed_url:
        feed = RealtimeDatabaseFeed(
            settings.stores.feed_url,
            auth=settings.stores.feed_auth,
            timeout_s=settings.stores.http_timeout_s,
            read_retries=settings.stores.read_retries,
        )
    else:
        feed = InMemoryMessageFeed()

    logger.info(
        "Tower engine ready (profile=%s, feed=%s)", settings.profile_name, type(feed).__name__
    )
    return GeoWhisperService(content_store, feed, settings)
