"""
Tests for YAML engine profiles and environment overrides
(geowhisper.tools.config_loader)
"""

from pathlib import Path

import pytest

from geowhisper.tools.config_loader import (
    ConfigLoader,
    EngineSettings,
    TowerSettings,
    get_settings,
)


class TestProfiles:

    def test_default_profile_matches_builtins(self):
        assert ConfigLoader.load_settings("default") == EngineSettings()

    def test_dense_city_profile(self):
        settings = ConfigLoader.load_settings("dense-city")

        assert settings.profile_name == "dense-city"
        assert settings.towers.radius_m == 30
        assert settings.proximity.interaction_radius_m == 300
        assert settings.activity.message_threshold == 80
        assert settings.clustering.h3_res == 11

    def test_suburban_profile(self):
        settings = ConfigLoader.load_settings("suburban")

        assert settings.towers.radius_m == 100
        assert settings.proximity.interaction_radius_m == 1000
        assert settings.activity.window_hours == 48
        assert settings.clustering.max_items == 300
        assert settings.stores.http_timeout_s == 15

    def test_profiles_ship_inside_the_package(self):
        import geowhisper

        package_dir = Path(geowhisper.__file__).resolve().parent
        assert ConfigLoader.config_dir() == package_dir / "configs"
        assert {"default", "dense-city", "suburban"} <= {p.stem for p in ConfigLoader.config_dir().glob("*.yaml")}

    def test_profile_from_environment(self, monkeypatch):
        monkeypatch.setenv("GEOWHISPER_PROFILE", "suburban")

        assert ConfigLoader.get_profile_from_env() == "suburban"
        assert ConfigLoader.load_settings().profile_name == "suburban"

    def test_unknown_profile_lists_available(self):
        with pytest.raises(FileNotFoundError) as exc_info:
            ConfigLoader.load_profile("atlantis")

        message = str(exc_info.value)
        assert "atlantis" in message
        assert "dense-city" in message

    def test_missing_default_falls_back_to_builtins(self, monkeypatch, tmp_path):
        monkeypatch.setenv("GEOWHISPER_CONFIG_DIR", str(tmp_path))

        assert ConfigLoader.load_settings() == EngineSettings()
        with pytest.raises(FileNotFoundError):
            ConfigLoader.load_settings("dense-city")

    def test_custom_config_dir(self, monkeypatch, tmp_path):
        (tmp_path / "campus.yaml").write_text(
            "towers:\n  radius_m: 75\n  unknown_key: 1\nproximity:\n  interaction_radius_m: 250\n"
        )
        monkeypatch.setenv("GEOWHISPER_CONFIG_DIR", str(tmp_path))

        settings = ConfigLoader.load_settings("campus")

        assert settings.towers == TowerSettings(radius_m=75)
        assert settings.proximity.interaction_radius_m == 250
        assert settings.activity.window_hours == 24.0

    def test_empty_profile_file(self, monkeypatch, tmp_path):
        (tmp_path / "blank.yaml").write_text("")
        monkeypatch.setenv("GEOWHISPER_CONFIG_DIR", str(tmp_path))

        settings = ConfigLoader.load_settings("blank")

        assert settings.towers == TowerSettings()
        assert settings.profile_name == "blank"


class TestEnvironmentOverrides:

    def test_feed_location_from_environment(self, monkeypatch):
        monkeypatch.setenv("GEOWHISPER_FEED_URL", "https://example-db.firebaseio.com")
        monkeypatch.setenv("GEOWHISPER_FEED_AUTH", "token-123")

        settings = get_settings("default")

        assert settings.stores.feed_url == "https://example-db.firebaseio.com"
        assert settings.stores.feed_auth == "token-123"

    def test_no_feed_by_default(self):
        assert get_settings().stores.feed_url is None


def test_from_dict_ignores_unknown_sections():
    settings = EngineSettings.from_dict({"routing": {"mode": "walk"}, "towers": {"radius_m": 40}})
    assert settings.towers.radius_m == 40
    assert settings.profile_name == "default"
