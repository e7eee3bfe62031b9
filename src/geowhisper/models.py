"""Typed records shared across the tower engine."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LatLng(BaseModel):
    """Simple latitude/longitude container."""

    lat: float = Field(..., ge=-90.0, le=90.0, description="Latitude in decimal degrees")
    lng: float = Field(..., ge=-180.0, le=180.0, description="Longitude in decimal degrees")

    model_config = ConfigDict(frozen=True)


class Tower(BaseModel):
    """
    Persistent location cluster.

    ``anchor`` is the first member's location and ``radius_m`` the assignment
    radius at creation; neither changes afterwards. Updates produce copies.
    """

    id: str
    anchor: LatLng
    radius_m: float = Field(..., gt=0)
    member_ids: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(frozen=True)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def member_count(self) -> int:
        return len(self.member_ids)

    def has_member(self, member_id: str) -> bool:
        return member_id in self.member_ids

    def to_document(self) -> Dict[str, Any]:
        """Payload persisted in the content store (id lives in the key)."""
        return self.model_dump(exclude={"id"})

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "Tower":
        return cls(id=doc_id, **{k: v for k, v in data.items() if k not in ("id", "member_count")})


class ContentItem(BaseModel):
    """A piece of user content as far as tower assignment is concerned.

    Other fields written by the surrounding application (captions, images,
    author) are kept as extras and passed through untouched.
    """

    id: str = Field(..., min_length=1)
    location: LatLng
    tower_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(extra="allow")

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"id"})

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "ContentItem":
        return cls(id=doc_id, **{k: v for k, v in data.items() if k != "id"})


class ChatMessage(BaseModel):
    """One entry of a tower's chat feed. ``timestamp`` is epoch milliseconds."""

    id: Optional[str] = None
    user_id: str = Field("unknown", alias="userId")
    username: str = "Anonymous"
    text: str = Field("", alias="message")
    timestamp: int
    image: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """Shape used by the realtime feed (camelCase, ``message`` body)."""
        data = self.model_dump(by_alias=True, exclude={"id"}, exclude_none=True)
        if self.image:
            data["hasImage"] = True
        return data


class ActivityLevel(str, Enum):
    """Hot-zone intensity buckets."""
    HOT = "hot"
    VERY_HOT = "very_hot"
    EXTREME = "extreme"


class ActivityReport(BaseModel):
    """Activity snapshot for one tower over a time window."""

    tower_id: str
    message_count: int
    message_count_last_hour: int
    unique_user_count: int
    activity_level: ActivityLevel
    activity_score: float = Field(..., ge=0.0, le=100.0)
    trending_topic: str
    last_message_timestamp: Optional[int] = None
    recent_usernames: List[str] = Field(default_factory=list)
    anchor: Optional[LatLng] = None

    def to_json(self) -> str:
        """Convert to JSON string for logging."""
        return json.dumps(self.model_dump(mode="json"), ensure_ascii=False)


class HotZoneRequest(BaseModel):
    message_threshold: int = Field(50, ge=0)
    time_range_hours: float = Field(24, gt=0)
    center: Optional[LatLng] = None
    radius_km: float = Field(10.0, gt=0)


class HotZoneStatistics(BaseModel):
    total_messages: int = 0
    total_unique_users: int = 0
    most_active_zone: Optional[ActivityReport] = None
    hot_zones_count: int = 0
    very_hot_zones_count: int = 0
    extreme_zones_count: int = 0


class HotZonesMap(BaseModel):
    hot_zones: List[ActivityReport]
    total_hot_zones: int
    message_threshold: int
    time_range_hours: float
    search_area: str
    statistics: HotZoneStatistics


class TowerWithContent(BaseModel):
    """A tower together with the content items it currently holds."""

    tower: Tower
    items: List[ContentItem]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def item_count(self) -> int:
        return len(self.items)


class NearbyContent(BaseModel):
    item: ContentItem
    distance_m: float
