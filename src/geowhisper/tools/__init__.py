"""Configuration and retry utilities."""

from .config_loader import (
    ActivitySettings,
    ClusteringSettings,
    ConfigLoader,
    EngineSettings,
    ProximitySettings,
    StoreSettings,
    TowerSettings,
    get_settings,
)
from .retry import exponential_backoff_with_jitter, full_jitter_backoff, retry_read

__all__ = [
    "ActivitySettings",
    "ClusteringSettings",
    "ConfigLoader",
    "EngineSettings",
    "ProximitySettings",
    "StoreSettings",
    "TowerSettings",
    "get_settings",
    "exponential_backoff_with_jitter",
    "full_jitter_backoff",
    "retry_read",
]
