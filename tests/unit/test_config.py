"""Tests for settings and default paths."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from onyx.config import (
    DefaultPaths,
    OnyxSettings,
    get_default_paths,
    load_yaml,
    save_yaml,
    set_config_value,
)
from onyx.errors import LocalIOError


class TestDefaultPaths:
    def test_returns_dataclass(self, temp_dir):
        paths = get_default_paths(temp_dir)
        assert isinstance(paths, DefaultPaths)
        assert paths.config == temp_dir / "config.yaml"
        assert paths.session == temp_dir / "session.json"
        assert paths.store == temp_dir / "store.json"

    def test_default_dir(self):
        """Without a config dir the per-user app directory is used."""
        paths = get_default_paths()
        assert isinstance(paths.config, Path)
        assert paths.config.parent.name.lower() == "onyx"


class TestYaml:
    def test_missing_file(self, temp_dir):
        assert load_yaml(temp_dir / "missing.yaml") == {}

    def test_malformed_file(self, temp_dir):
        path = temp_dir / "config.yaml"
        path.write_text("log_level: [INFO\n")
        with pytest.raises(LocalIOError):
            load_yaml(path)

    def test_not_a_mapping(self, temp_dir):
        path = temp_dir / "config.yaml"
        path.write_text("- log_level\n")
        with pytest.raises(LocalIOError, match="mapping"):
            load_yaml(path)

    def test_round_trip(self, temp_dir):
        path = temp_dir / "sub" / "config.yaml"
        save_yaml(path, {"log_level": "INFO", "request_timeout": 5.0})
        assert load_yaml(path) == {"log_level": "INFO", "request_timeout": 5.0}


class TestOnyxSettings:
    def test_defaults(self, temp_dir, monkeypatch):
        monkeypatch.delenv("ONYX_LOG_LEVEL", raising=False)
        settings = OnyxSettings.load(temp_dir)
        assert settings.config_dir == temp_dir
        assert settings.service_name == "onyx"
        assert settings.plc_directory == "https://plc.directory"
        assert settings.oauth_scope == "atproto transition:generic"
        assert settings.log_level == "WARNING"

    def test_reads_config_file(self, temp_dir, monkeypatch):
        monkeypatch.delenv("ONYX_REQUEST_TIMEOUT", raising=False)
        (temp_dir / "config.yaml").write_text("request_timeout: 3.5\nappview_url: https://appview.example.com\n")

        settings = OnyxSettings.load(temp_dir)
        assert settings.request_timeout == 3.5
        assert settings.appview_url == "https://appview.example.com"

    def test_environment_wins(self, temp_dir, monkeypatch):
        (temp_dir / "config.yaml").write_text("log_level: INFO\n")
        monkeypatch.setenv("ONYX_LOG_LEVEL", "DEBUG")

        assert OnyxSettings.load(temp_dir).log_level == "DEBUG"

    def test_invalid_value_in_file(self, temp_dir, monkeypatch):
        monkeypatch.delenv("ONYX_REQUEST_TIMEOUT", raising=False)
        (temp_dir / "config.yaml").write_text("request_timeout: soon\n")

        with pytest.raises(LocalIOError, match="Invalid settings"):
            OnyxSettings.load(temp_dir)

    def test_file_keys(self):
        keys = OnyxSettings.file_keys()
        assert "config_dir" not in keys
        assert {"request_timeout", "log_level", "appview_url"} <= set(keys)


class TestSetConfigValue:
    def test_writes_typed_value(self, temp_dir, monkeypatch):
        monkeypatch.delenv("ONYX_CALLBACK_TIMEOUT", raising=False)
        (temp_dir / "config.yaml").write_text("log_level: INFO\n")

        assert set_config_value(temp_dir, "callback_timeout", "60") == 60.0

        assert load_yaml(temp_dir / "config.yaml") == {"log_level": "INFO", "callback_timeout": 60.0}
        assert OnyxSettings.load(temp_dir).callback_timeout == 60.0

    def test_rejects_wrong_type(self, temp_dir):
        with pytest.raises(ValidationError):
            set_config_value(temp_dir, "request_timeout", "soon")
        assert not (temp_dir / "config.yaml").exists()

    def test_rejects_unknown_key(self, temp_dir):
        with pytest.raises(KeyError):
            set_config_value(temp_dir, "config_dir", "/tmp")
