"""
Configuration loader for engine profiles and environment variables.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

PROFILE_ENV_VAR = "GEOWHISPER_PROFILE"
CONFIG_DIR_ENV_VAR = "GEOWHISPER_CONFIG_DIR"
DEFAULT_PROFILE = "default"


@dataclass
class TowerSettings:
    """Persistent tower assignment."""

    radius_m: float = 50.0
    """Assignment radius for new content and for newly created towers."""

    update_deadline_s: float = 30.0
    """Time budget for one add/remove under contention."""

    max_update_attempts: Optional[int] = None
    """Optional hard cap on compare-and-set attempts; None retries until the deadline."""

    conflict_backoff_s: float = 0.005
    """Base delay between conflicting attempts (full jitter, exponential)."""

    max_conflict_backoff_s: float = 0.25


@dataclass
class ProximitySettings:
    interaction_radius_m: float = 500.0
    """Users must be within this distance of a tower anchor to post, like, comment or chat."""


@dataclass
class ActivitySettings:
    """Hot-zone scoring."""

    window_hours: float = 24.0
    message_threshold: int = 50
    feed_timeout_s: float = 10.0
    feed_fetch_limit: int = 5000
    max_concurrency: int = 16
    report_cache_ttl_s: float = 30.0
    """0 disables the per-tower report cache."""


@dataclass
class ClusteringSettings:
    default_radius_m: float = 50.0
    max_items: int = 500
    h3_res: int = 10


@dataclass
class StoreSettings:
    read_retries: int = 3
    feed_url: Optional[str] = None
    """Base URL of the realtime database; None uses the in-memory feed."""

    feed_auth: Optional[str] = None
    http_timeout_s: float = 10.0


def _section(cls, data: Optional[Dict[str, Any]]):
    """Build a settings dataclass from a mapping, ignoring unknown keys."""
    data = data or {}
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class EngineSettings:
    """Complete engine configuration, one section per component."""

    towers: TowerSettings = field(default_factory=TowerSettings)
    proximity: ProximitySettings = field(default_factory=ProximitySettings)
    activity: ActivitySettings = field(default_factory=ActivitySettings)
    clustering: ClusteringSettings = field(default_factory=ClusteringSettings)
    stores: StoreSettings = field(default_factory=StoreSettings)
    profile_name: str = DEFAULT_PROFILE

    @classmethod
    def from_dict(cls, data: Dict[str, Any], profile_name: str = DEFAULT_PROFILE) -> "EngineSettings":
        return cls(
            towers=_section(TowerSettings, data.get("towers")),
            proximity=_section(ProximitySettings, data.get("proximity")),
            activity=_section(ActivitySettings, data.get("activity")),
            clustering=_section(ClusteringSettings, data.get("clustering")),
            stores=_section(StoreSettings, data.get("stores")),
            profile_name=profile_name,
        )


class ConfigLoader:
    """Load and manage configuration from YAML files and environment."""

    CONFIG_DIR = Path(__file__).resolve().parents[1] / "configs"

    @classmethod
    def config_dir(cls) -> Path:
        override = os.getenv(CONFIG_DIR_ENV_VAR)
        return Path(override) if override else cls.CONFIG_DIR

    @classmethod
    def load_profile(cls, profile_name: str = DEFAULT_PROFILE) -> Dict[str, Any]:
        """
        Load an engine profile.

        Args:
            profile_name: Name of the profile (default, dense-city, suburban)

        Returns:
            Dictionary with configuration values

        Raises:
            FileNotFoundError: If profile doesn't exist
        """
        config_dir = cls.config_dir()
        profile_path = config_dir / f"{profile_name}.yaml"

        if not profile_path.exists():
            available = [f.stem for f in config_dir.glob("*.yaml")]
            raise FileNotFoundError(
                f"Profile '{profile_name}' not found. Available profiles: {', '.join(available)}"
            )

        with open(profile_path, "r") as f:
            return yaml.safe_load(f) or {}

    @classmethod
    def get_profile_from_env(cls) -> Optional[str]:
        """Get profile name from GEOWHISPER_PROFILE environment variable."""
        return os.getenv(PROFILE_ENV_VAR)

    @classmethod
    def load_settings(cls, profile_name: Optional[str] = None) -> EngineSettings:
        """
        Load settings for ``profile_name`` (or the env/default profile).

        The ``default`` profile falls back to built-in values when its YAML
        file is not shipped alongside the package. Feed location and
        credentials can be overridden with GEOWHISPER_FEED_URL and
        GEOWHISPER_FEED_AUTH.
        """
        name = profile_name or cls.get_profile_from_env() or DEFAULT_PROFILE
        try:
            data = cls.load_profile(name)
        except FileNotFoundError:
            if name != DEFAULT_PROFILE:
                raise
            data = {}

        settings = EngineSettings.from_dict(data, profile_name=name)

        feed_url = os.getenv("GEOWHISPER_FEED_URL")
        if feed_url:
            settings.stores.feed_url = feed_url
        feed_auth = os.getenv("GEOWHISPER_FEED_AUTH")
        if feed_auth:
            settings.stores.feed_auth = feed_auth
        return settings


def get_settings(profile_name: Optional[str] = None) -> EngineSettings:
    """Convenience function: read ``.env`` then load the active profile."""
    load_dotenv()
    return ConfigLoader.load_settings(profile_name)
