"""
Activity Scoring Module

Provides hot-zone scoring for towers with:
- Windowed message counts and last-hour activity
- Capped three-part activity score (0-100)
- Activity level buckets and trending topics
- Concurrent hot-zone maps with a TTL report cache

Usage:
    from geowhisper.scoring import ActivityScorer, HotZoneAnalyzer

    scorer = ActivityScorer(feed, settings.activity)
    report = await scorer.score_tower("tower-1", window_hours=24, threshold=50)
"""

from .activity import (
    ActivityScorer,
    activity_level,
    compute_activity_score,
    extract_trending_topic,
    to_epoch_ms,
    HOUR_MS,
    STOP_WORDS,
)
from .hot_zones import (
    HotZoneAnalyzer,
    ReportCache,
    calculate_statistics,
    describe_search_area,
)

__all__ = [
    "ActivityScorer",
    "activity_level",
    "compute_activity_score",
    "extract_trending_topic",
    "to_epoch_ms",
    "HOUR_MS",
    "STOP_WORDS",
    "HotZoneAnalyzer",
    "ReportCache",
    "calculate_statistics",
    "describe_search_area",
]
