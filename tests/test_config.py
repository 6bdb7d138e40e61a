"""Tests for configuration loading from environment variables and files."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from edgeroute.core.config import (
    RouterSettings,
    clear_settings,
    get_settings,
    load_config_from_file,
    settings_overrides_from_file,
)


class TestRouterSettings:
    """Test RouterSettings."""

    def test_default_values(self) -> None:
        """Test default values."""
        settings = RouterSettings()
        assert settings.bind == "0.0.0.0:8080"
        assert settings.admin_prefix == "/__admin/api"
        assert settings.country_header == "CF-IPCountry"
        assert settings.cache_ttl_floor_ms == 5000
        assert settings.admin_allowed_ips == []

    def test_env_override_origin(self) -> None:
        """Test EDGEROUTE_ORIGIN_URL env var."""
        with patch.dict(os.environ, {"EDGEROUTE_ORIGIN_URL": "http://10.0.0.5:8080"}):
            settings = RouterSettings()
            assert settings.origin_url == "http://10.0.0.5:8080"

    def test_env_override_store_backend(self) -> None:
        """Test EDGEROUTE_STORE_BACKEND env var."""
        with patch.dict(os.environ, {"EDGEROUTE_STORE_BACKEND": "memory"}):
            settings = RouterSettings()
            assert settings.store_backend == "memory"

    def test_env_override_allowed_ips(self) -> None:
        """List settings are read as JSON."""
        with patch.dict(os.environ, {"EDGEROUTE_ADMIN_ALLOWED_IPS": '["10.0.0.0/8"]'}):
            settings = RouterSettings()
            assert settings.admin_allowed_ips == ["10.0.0.0/8"]

    def test_invalid_backend_rejected(self) -> None:
        with pytest.raises(ValueError):
            RouterSettings(store_backend="redis")

    def test_ttl_floor_minimum(self) -> None:
        with pytest.raises(ValueError):
            RouterSettings(cache_ttl_floor_ms=10)

    def test_admin_token_hidden_from_repr(self) -> None:
        assert "s3cret" not in repr(RouterSettings(admin_token="s3cret"))

    def test_parse_bind(self) -> None:
        assert RouterSettings(bind="127.0.0.1:9000").parse_bind() == ("127.0.0.1", 9000)
        assert RouterSettings(bind="localhost").parse_bind() == ("localhost", 8080)


class TestGetSettings:
    """Test the cached settings accessor."""

    def test_cached_until_cleared(self) -> None:
        clear_settings()
        try:
            first = get_settings(origin_url="http://a.internal")
            assert get_settings() is first
            clear_settings()
            with patch.dict(os.environ, {"EDGEROUTE_ORIGIN_URL": "http://b.internal"}):
                assert get_settings().origin_url == "http://b.internal"
        finally:
            clear_settings()


class TestConfigFiles:
    """Test file loading."""

    def test_yaml(self, tmp_path) -> None:
        path = tmp_path / "routes.yaml"
        path.write_text("- id: a\n  match: {}\n")
        assert load_config_from_file(path) == [{"id": "a", "match": {}}]

    def test_toml(self, tmp_path) -> None:
        path = tmp_path / "settings.toml"
        path.write_text('bind = "127.0.0.1:9000"\n')
        assert load_config_from_file(path) == {"bind": "127.0.0.1:9000"}

    def test_json(self, tmp_path) -> None:
        path = tmp_path / "routes.json"
        path.write_text('{"routes": []}')
        assert load_config_from_file(path) == {"routes": []}

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config_from_file(tmp_path / "nope.yaml")

    def test_unsupported_suffix(self, tmp_path) -> None:
        path = tmp_path / "settings.ini"
        path.write_text("[x]")
        with pytest.raises(ValueError):
            load_config_from_file(path)

    def test_parse_error(self, tmp_path) -> None:
        path = tmp_path / "broken.json"
        path.write_text("{broken")
        with pytest.raises(ValueError):
            load_config_from_file(path)

    def test_settings_overrides_unwrap_table(self, tmp_path) -> None:
        path = tmp_path / "edgeroute.toml"
        path.write_text('[edgeroute]\nstore_backend = "memory"\n')
        assert settings_overrides_from_file(path) == {"store_backend": "memory"}

    def test_settings_overrides_flat(self, tmp_path) -> None:
        path = tmp_path / "edgeroute.yaml"
        path.write_text("origin_url: http://origin.internal\n")
        assert settings_overrides_from_file(path) == {"origin_url": "http://origin.internal"}

    def test_settings_overrides_must_be_mapping(self, tmp_path) -> None:
        path = tmp_path / "edgeroute.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            settings_overrides_from_file(path)
