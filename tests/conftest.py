"""
Pytest configuration and shared fixtures for geowhisper tests.

This file provides:
- In-memory stores and a service wired to them
- A content store that fails reads on demand
- Coordinate and chat message builders
"""

import math
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from geowhisper.errors import TransientStoreError
from geowhisper.models import ChatMessage, LatLng
from geowhisper.service import GeoWhisperService
from geowhisper.spatial.geo import EARTH_RADIUS_M
from geowhisper.stores.memory import InMemoryContentStore, InMemoryMessageFeed
from geowhisper.tools.config_loader import EngineSettings


METERS_PER_DEGREE = EARTH_RADIUS_M * math.pi / 180.0

ORIGIN = LatLng(lat=40.7128, lng=-74.0060)
"""Lower Manhattan; all scenario coordinates are offsets from here."""

NOW = datetime(2025, 10, 12, 13, 0, 0, tzinfo=timezone.utc)


# ==============================================================================
# Coordinate helpers
# ==============================================================================

def offset(origin: LatLng, north_m: float = 0.0, east_m: float = 0.0) -> LatLng:
    """Point ``north_m`` / ``east_m`` meters away from ``origin`` (small offsets)."""
    lat = origin.lat + north_m / METERS_PER_DEGREE
    lng = origin.lng + east_m / (METERS_PER_DEGREE * math.cos(math.radians(origin.lat)))
    return LatLng(lat=lat, lng=lng)


# ==============================================================================
# Chat message helpers
# ==============================================================================

def to_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def make_messages(
    count: int,
    *,
    now: datetime = NOW,
    age: timedelta = timedelta(hours=2),
    users: int = 5,
    text: str = "coffee at the corner",
    start: int = 0,
) -> List[ChatMessage]:
    """``count`` messages spread one second apart ending ``age`` before ``now``."""
    newest = to_ms(now - age)
    return [
        ChatMessage(
            user_id=f"user-{(start + i) % users}",
            username=f"User {(start + i) % users}",
            text=text,
            timestamp=newest - (count - 1 - i) * 1000,
        )
        for i in range(count)
    ]


async def load_feed(feed: InMemoryMessageFeed, tower_id: str, messages: List[ChatMessage]) -> None:
    for message in messages:
        await feed.append(tower_id, message)


# ==============================================================================
# Settings
# ==============================================================================

def make_settings(**sections) -> EngineSettings:
    """
    Default settings with per-section overrides.

    Example: ``make_settings(towers={"radius_m": 120})``
    """
    settings = EngineSettings()
    for section, values in sections.items():
        target = getattr(settings, section)
        for key, value in values.items():
            setattr(target, key, value)
    return settings


# ==============================================================================
# Stores
# ==============================================================================

class FlakyContentStore(InMemoryContentStore):
    """In-memory store whose first ``failures`` reads raise TransientStoreError."""

    def __init__(self, failures: int = 1, latency: float = 0.0):
        super().__init__(latency=latency)
        self.failures = failures
        self.read_calls = 0

    def _maybe_fail(self) -> None:
        self.read_calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise TransientStoreError("simulated store outage")

    async def get(self, collection, doc_id):
        self._maybe_fail()
        return await super().get(collection, doc_id)

    async def list_documents(self, collection, limit: Optional[int] = None):
        self._maybe_fail()
        return await super().list_documents(collection, limit)


@pytest.fixture
def content_store() -> InMemoryContentStore:
    return InMemoryContentStore()


@pytest.fixture
def feed() -> InMemoryMessageFeed:
    return InMemoryMessageFeed()


@pytest.fixture
def settings() -> EngineSettings:
    # no report caching so each test sees its own feed state
    return make_settings(activity={"report_cache_ttl_s": 0})


@pytest.fixture
def service(content_store, feed, settings) -> GeoWhisperService:
    return GeoWhisperService(content_store, feed, settings)


@pytest.fixture
def origin() -> LatLng:
    return ORIGIN


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch):
    """Keep developer shell settings out of the tests."""
    for var in (
        "GEOWHISPER_PROFILE",
        "GEOWHISPER_CONFIG_DIR",
        "GEOWHISPER_FEED_URL",
        "GEOWHISPER_FEED_AUTH",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


def assert_approx_equal(a: float, b: float, tolerance: float = 0.01):
    """Assert two floats are approximately equal."""
    assert abs(a - b) < tolerance, f"{a} != {b} (tolerance={tolerance})"
