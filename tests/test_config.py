"""Tests for settings models, stores and loaders."""

import json

import pytest
import toml
import yaml
from pydantic import ValidationError

from ethicrawler_shield.config import (
    ConfigFormat,
    DetectorSettings,
    EnvironmentSettingsLoader,
    FileSettingsLoader,
    MemorySettingsStore,
    load_settings,
)


class TestDetectorSettings:

    def test_defaults(self):
        settings = DetectorSettings()
        assert settings.site_id == ""
        assert settings.backend_url == "https://api.ethicrawler.com"
        assert settings.enabled is True
        assert settings.first_attempt_timeout == 2.0
        assert settings.retry_timeout == 10.0
        assert settings.max_retries == 3
        assert settings.retry_base_delay == 60
        assert settings.retry_ttl == 86400
        assert settings.max_recent_errors == 10
        assert settings.debug is False
        assert settings.debug_endpoint is False
        assert settings.excluded_path_prefixes == []

    def test_invalid_timeout_rejected(self):
        with pytest.raises(ValidationError):
            DetectorSettings(first_attempt_timeout=0)


class TestMemorySettingsStore:

    def test_overrides_at_construction(self):
        store = MemorySettingsStore(site_id="site-1")
        assert store.get().site_id == "site-1"

    def test_update_takes_effect(self):
        store = MemorySettingsStore()
        store.update(site_id="site-2", enabled=False)
        assert store.get().site_id == "site-2"
        assert store.get().enabled is False

    def test_invalid_update_keeps_previous_settings(self):
        store = MemorySettingsStore(site_id="site-3")
        with pytest.raises(ValidationError):
            store.update(max_retries=-1)
        assert store.get().max_retries == 3


class TestFileSettingsLoader:

    def test_yaml(self, tmp_path):
        path = tmp_path / "ethicrawler.yaml"
        path.write_text(yaml.safe_dump({"site_id": "yaml-site", "debug": True}))
        loader = FileSettingsLoader(path)
        assert loader.format == ConfigFormat.YAML
        assert loader.load() == {"site_id": "yaml-site", "debug": True}

    def test_json(self, tmp_path):
        path = tmp_path / "ethicrawler.json"
        path.write_text(json.dumps({"backend_url": "https://collector.test"}))
        assert FileSettingsLoader(path).load() == {"backend_url": "https://collector.test"}

    def test_toml_section(self, tmp_path):
        path = tmp_path / "settings.toml"
        path.write_text(toml.dumps({"ethicrawler": {"site_id": "toml-site", "max_retries": 5}}))
        assert FileSettingsLoader(path).load() == {"site_id": "toml-site", "max_retries": 5}

    def test_explicit_format(self, tmp_path):
        path = tmp_path / "settings.conf"
        path.write_text(json.dumps({"site_id": "conf"}))
        assert FileSettingsLoader(path, file_format=ConfigFormat.JSON).load() == {"site_id": "conf"}

    def test_missing_file(self, tmp_path):
        assert FileSettingsLoader(tmp_path / "absent.yaml").load() == {}

    def test_malformed_file_raises(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(ValueError):
            FileSettingsLoader(path).load()


class TestEnvironmentSettingsLoader:

    def test_known_fields_with_conversion(self):
        environ = {
            "ETHICRAWLER_SITE_ID": "12345",
            "ETHICRAWLER_ENABLED": "false",
            "ETHICRAWLER_MAX_RETRIES": "5",
            "ETHICRAWLER_RETRY_TIMEOUT": "2.5",
            "ETHICRAWLER_EXCLUDED_PATH_PREFIXES": "/admin, /health,",
            "ETHICRAWLER_UNKNOWN": "x",
            "OTHER_SITE_ID": "ignored",
        }
        assert EnvironmentSettingsLoader(environ=environ).load() == {
            "site_id": "12345",
            "enabled": False,
            "max_retries": 5,
            "retry_timeout": 2.5,
            "excluded_path_prefixes": ["/admin", "/health"],
        }

    def test_custom_prefix(self):
        loader = EnvironmentSettingsLoader(prefix="BOTS_", environ={"BOTS_DEBUG": "yes"})
        assert loader.load() == {"debug": True}


class TestLoadSettings:

    def test_layering(self, tmp_path):
        path = tmp_path / "ethicrawler.yaml"
        path.write_text(yaml.safe_dump({"site_id": "from-file", "max_retries": 4, "debug": True}))
        environ = {"ETHICRAWLER_MAX_RETRIES": "2"}

        settings = load_settings(path, environ=environ, debug=False)

        assert settings.site_id == "from-file"
        assert settings.max_retries == 2
        assert settings.debug is False
        assert settings.backend_url == "https://api.ethicrawler.com"

    def test_defaults_only(self):
        assert load_settings(environ={}) == DetectorSettings()
