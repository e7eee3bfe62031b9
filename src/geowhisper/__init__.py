"""
GeoWhisper tower engine.

Groups location-tagged content into persistent towers, clusters content for
map display, scores tower chat activity and gates interactions by distance.
"""

from .errors import (
    GeoWhisperError,
    NotFoundError,
    PermissionDeniedError,
    TransactionConflictError,
    TransientStoreError,
    ValidationError,
)
from .models import (
    ActivityLevel,
    ActivityReport,
    ChatMessage,
    ContentItem,
    HotZoneRequest,
    HotZonesMap,
    LatLng,
    Tower,
)
from .service import GeoWhisperService, create_service
from .tools.config_loader import EngineSettings, get_settings

__version__ = "0.1.0"

__all__ = [
    "GeoWhisperError",
    "NotFoundError",
    "PermissionDeniedError",
    "TransactionConflictError",
    "TransientStoreError",
    "ValidationError",
    "ActivityLevel",
    "ActivityReport",
    "ChatMessage",
    "ContentItem",
    "HotZoneRequest",
    "HotZonesMap",
    "LatLng",
    "Tower",
    "GeoWhisperService",
    "create_service",
    "EngineSettings",
    "get_settings",
]
