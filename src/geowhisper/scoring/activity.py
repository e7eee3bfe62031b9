"""
Tower Activity Scoring

Turns a tower's chat feed into an activity report:
- message volume over a time window and over the last hour
- distinct participants
- a 0-100 composite score built from three capped contributions
- an activity level bucket (hot / very_hot / extreme)
- a trending topic (most frequent meaningful word)

Feed reads run under an explicit timeout; a slow or failing feed yields
"no report" for that tower instead of blocking the caller.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

import pandas as pd

from ..errors import TransientStoreError, ValidationError
from ..models import ActivityLevel, ActivityReport, ChatMessage, LatLng
from ..stores.base import MessageFeedStore
from ..tools.config_loader import ActivitySettings

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000

# Score contributions: (cap, saturation point)
MESSAGE_SCORE_MAX = 50.0
MESSAGE_SCORE_SATURATION = 200.0
RECENT_SCORE_MAX = 30.0
RECENT_SCORE_SATURATION = 20.0
ENGAGEMENT_SCORE_MAX = 20.0
ENGAGEMENT_SCORE_SATURATION = 30.0

EXTREME_MIN_MESSAGES = 200
VERY_HOT_MIN_MESSAGES = 100

STOP_WORDS = frozenset({
    "the", "is", "at", "which", "on", "a", "an", "and", "or", "but", "in", "with", "to", "for",
})
MIN_TOPIC_WORD_LENGTH = 4
MAX_RECENT_USERNAMES = 5

_NON_LETTERS = re.compile(r"[^a-z]")


def compute_activity_score(message_count: int, messages_last_hour: int, unique_users: int) -> float:
    """
    Composite activity score in [0, 100].

    Three independently capped parts are summed and clamped:
    volume (max 50, saturates at 200 messages), recency (max 30, saturates at
    20 messages in the last hour) and engagement (max 20, saturates at 30
    distinct users).
    """
    message_score = min(MESSAGE_SCORE_MAX, message_count / MESSAGE_SCORE_SATURATION * MESSAGE_SCORE_MAX)
    recent_score = min(RECENT_SCORE_MAX, messages_last_hour / RECENT_SCORE_SATURATION * RECENT_SCORE_MAX)
    engagement_score = min(
        ENGAGEMENT_SCORE_MAX, unique_users / ENGAGEMENT_SCORE_SATURATION * ENGAGEMENT_SCORE_MAX
    )
    return max(0.0, min(100.0, message_score + recent_score + engagement_score))


def activity_level(message_count: int) -> ActivityLevel:
    if message_count >= EXTREME_MIN_MESSAGES:
        return ActivityLevel.EXTREME
    if message_count >= VERY_HOT_MIN_MESSAGES:
        return ActivityLevel.VERY_HOT
    return ActivityLevel.HOT


def extract_trending_topic(texts: Iterable[str]) -> str:
    """
    Most frequent meaningful word across ``texts``, capitalized.

    Words are lower-cased, stripped of anything but a-z, and dropped when
    shorter than four letters or a stopword. Equally frequent words resolve
    alphabetically.
    """
    texts = list(texts)
    if not texts:
        return "General discussion"

    tokens: List[str] = []
    for text in texts:
        for word in str(text).lower().split():
            word = _NON_LETTERS.sub("", word)
            if len(word) >= MIN_TOPIC_WORD_LENGTH and word not in STOP_WORDS:
                tokens.append(word)

    if not tokens:
        return "Discussion"

    counts = pd.Series(tokens).value_counts()
    top = sorted(counts[counts == counts.max()].index)[0]
    return top[0].upper() + top[1:]


def to_epoch_ms(moment: Optional[datetime] = None) -> int:
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def _messages_frame(messages: Sequence[ChatMessage]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {"user_id": m.user_id, "username": m.username, "text": m.text, "timestamp": m.timestamp}
            for m in messages
        ],
        columns=["user_id", "username", "text", "timestamp"],
    )


class ActivityScorer:
    """
    Scores towers from their message feed.

    Args:
        feed: Message feed store
        settings: Window, threshold, timeout and fetch limit defaults
    """

    def __init__(self, feed: MessageFeedStore, settings: Optional[ActivitySettings] = None):
        self.feed = feed
        self.settings = settings or ActivitySettings()

    def score(
        self,
        tower_id: str,
        messages: Sequence[ChatMessage],
        window_hours: float,
        threshold: int,
        now: Optional[datetime] = None,
        anchor: Optional[LatLng] = None,
    ) -> Optional[ActivityReport]:
        """
        Build a report from ``messages``; None when below ``threshold``.

        Messages count when ``timestamp >= now - window_hours``; of those,
        the ones strictly newer than ``now - 1h`` count as last-hour activity.
        """
        if window_hours <= 0:
            raise ValidationError(f"window_hours must be positive, got {window_hours}")

        now_ms = to_epoch_ms(now)
        window_start = now_ms - int(window_hours * HOUR_MS)
        one_hour_ago = now_ms - HOUR_MS

        df = _messages_frame(messages)
        counted = df[df["timestamp"] >= window_start]
        message_count = len(counted)
        if message_count < threshold:
            return None

        recent = counted[counted["timestamp"] > one_hour_ago].sort_values("timestamp", kind="stable")
        last_hour_count = len(recent)
        unique_users = int(counted["user_id"].nunique())

        report = ActivityReport(
            tower_id=tower_id,
            message_count=message_count,
            message_count_last_hour=last_hour_count,
            unique_user_count=unique_users,
            activity_level=activity_level(message_count),
            activity_score=compute_activity_score(message_count, last_hour_count, unique_users),
            trending_topic=extract_trending_topic(counted["text"].tolist()),
            last_message_timestamp=int(counted["timestamp"].max()) if message_count else None,
            recent_usernames=list(dict.fromkeys(recent["username"].tolist()))[:MAX_RECENT_USERNAMES],
            anchor=anchor,
        )

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Activity report: {report.to_json()}")
        return report

    async def score_tower(
        self,
        tower_id: str,
        window_hours: Optional[float] = None,
        threshold: Optional[int] = None,
        now: Optional[datetime] = None,
        anchor: Optional[LatLng] = None,
    ) -> Optional[ActivityReport]:
        """
        Fetch the window from the feed and score it.

        Returns None when the tower is below threshold, and also when the
        fetch times out (``feed_timeout_s``) or the feed is unavailable.
        """
        window_hours = self.settings.window_hours if window_hours is None else window_hours
        threshold = self.settings.message_threshold if threshold is None else threshold
        if window_hours <= 0:
            raise ValidationError(f"window_hours must be positive, got {window_hours}")

        from_ts = to_epoch_ms(now) - int(window_hours * HOUR_MS)
        try:
            messages = await asyncio.wait_for(
                self.feed.range_by_time(tower_id, from_ts, None, self.settings.feed_fetch_limit),
                timeout=self.settings.feed_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Timeout analyzing tower %s after %.1fs; no report", tower_id, self.settings.feed_timeout_s
            )
            return None
        except TransientStoreError as exc:
            logger.error("Error fetching messages for tower %s: %s", tower_id, exc)
            return None

        return self.score(tower_id, messages, window_hours, threshold, now=now, anchor=anchor)
