"""
Hot-zone map: score many towers concurrently and summarize.

Each tower's feed fetch runs as its own task under the scorer's timeout, with
at most ``max_concurrency`` fetches in flight. Live reports (no explicit
``now``) are cached per ``(tower_id, window_hours, threshold)`` for
``report_cache_ttl_s`` seconds.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from cachetools import TTLCache

from ..models import (
    ActivityLevel,
    ActivityReport,
    HotZoneRequest,
    HotZoneStatistics,
    HotZonesMap,
    Tower,
)
from ..spatial.geo import distance_between
from ..tools.config_loader import ActivitySettings
from .activity import ActivityScorer

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, float, int]


class ReportCache:
    """TTL cache of activity reports; a zero TTL disables it."""

    def __init__(self, ttl_s: float, maxsize: int = 4096):
        self.ttl_s = ttl_s
        self._cache: Optional[TTLCache] = TTLCache(maxsize=maxsize, ttl=ttl_s) if ttl_s > 0 else None

    def get(self, key: CacheKey) -> Optional[ActivityReport]:
        if self._cache is None:
            return None
        return self._cache.get(key)

    def set(self, key: CacheKey, report: ActivityReport) -> None:
        if self._cache is not None:
            self._cache[key] = report

    def clear(self) -> None:
        if self._cache is not None:
            self._cache.clear()

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        if self._cache is None:
            return {"enabled": False, "size": 0, "maxsize": 0, "ttl": 0}
        return {
            "enabled": True,
            "size": len(self._cache),
            "maxsize": self._cache.maxsize,
            "ttl": self.ttl_s,
        }


def calculate_statistics(zones: List[ActivityReport]) -> HotZoneStatistics:
    return HotZoneStatistics(
        total_messages=sum(z.message_count for z in zones),
        total_unique_users=sum(z.unique_user_count for z in zones),
        most_active_zone=max(zones, key=lambda z: z.activity_score) if zones else None,
        hot_zones_count=sum(1 for z in zones if z.activity_level == ActivityLevel.HOT),
        very_hot_zones_count=sum(1 for z in zones if z.activity_level == ActivityLevel.VERY_HOT),
        extreme_zones_count=sum(1 for z in zones if z.activity_level == ActivityLevel.EXTREME),
    )


def describe_search_area(request: HotZoneRequest, tower_count: int) -> str:
    if request.center is not None:
        return (
            f"Within {request.radius_km:.1f} km of ({request.center.lat:.4f}, {request.center.lng:.4f}) "
            f"- {tower_count} towers analyzed"
        )
    return f"All towers - {tower_count} analyzed"


class HotZoneAnalyzer:
    """
    Produces hot-zone maps over a set of towers.

    Args:
        scorer: Activity scorer bound to the message feed
        settings: Concurrency and cache settings
    """

    def __init__(self, scorer: ActivityScorer, settings: Optional[ActivitySettings] = None):
        self.scorer = scorer
        self.settings = settings or scorer.settings
        self.cache = ReportCache(self.settings.report_cache_ttl_s)

    async def report_for(
        self,
        tower: Tower,
        window_hours: float,
        threshold: int,
        now: Optional[datetime] = None,
    ) -> Optional[ActivityReport]:
        key = (tower.id, float(window_hours), int(threshold))
        if now is None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        report = await self.scorer.score_tower(
            tower.id, window_hours, threshold, now=now, anchor=tower.anchor
        )
        if report is not None and now is None:
            self.cache.set(key, report)
        return report

    async def hot_zones(
        self,
        towers: List[Tower],
        request: HotZoneRequest,
        now: Optional[datetime] = None,
    ) -> HotZonesMap:
        """Score ``towers`` (optionally filtered to the request area) and rank them."""
        if not towers:
            return HotZonesMap(
                hot_zones=[],
                total_hot_zones=0,
                message_threshold=request.message_threshold,
                time_range_hours=request.time_range_hours,
                search_area="No towers found",
                statistics=HotZoneStatistics(),
            )

        if request.center is not None:
            limit_m = request.radius_km * 1000.0
            towers = [t for t in towers if distance_between(request.center, t.anchor) <= limit_m]

        logger.info("Analyzing %d towers for hot zones", len(towers))

        semaphore = asyncio.Semaphore(max(1, self.settings.max_concurrency))

        async def analyze(tower: Tower) -> Optional[ActivityReport]:
            async with semaphore:
                return await self.report_for(
                    tower, request.time_range_hours, request.message_threshold, now=now
                )

        reports = await asyncio.gather(*(analyze(t) for t in towers))

        zones = [
            r for r in reports
            if r is not None and r.message_count >= request.message_threshold
        ]
        zones.sort(key=lambda r: r.message_count, reverse=True)

        return HotZonesMap(
            hot_zones=zones,
            total_hot_zones=len(zones),
            message_threshold=request.message_threshold,
            time_range_hours=request.time_range_hours,
            search_area=describe_search_area(request, len(towers)),
            statistics=calculate_statistics(zones),
        )
