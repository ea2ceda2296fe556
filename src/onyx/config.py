"""Configuration: settings, default paths and YAML helpers."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import click
import pydantic
import pydantic_settings
import yaml

from onyx.errors import LocalIOError
from onyx.version import SERVICE_NAME

ENV_PREFIX = "ONYX_"
CONFIG_FILE_NAME = "config.yaml"
SESSION_FILE_NAME = "session.json"
STORE_FILE_NAME = "store.json"


def get_config_dir() -> Path:
    """Get the per-user configuration directory."""
    return Path(click.get_app_dir(SERVICE_NAME))


@dataclass
class DefaultPaths:
    """Files kept in the configuration directory."""

    config: Path
    session: Path
    store: Path


def get_default_paths(config_dir: Optional[Path] = None) -> DefaultPaths:
    root = Path(config_dir) if config_dir is not None else get_config_dir()
    return DefaultPaths(
        config=root / CONFIG_FILE_NAME,
        session=root / SESSION_FILE_NAME,
        store=root / STORE_FILE_NAME,
    )


def load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML config file."""
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise LocalIOError(f"Cannot read {path}: {e}") from e
    if not isinstance(data, dict):
        raise LocalIOError(f"{path} must hold a mapping of settings")
    return data


def save_yaml(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=True))


class OnyxSettings(pydantic_settings.BaseSettings):
    model_config = pydantic_settings.SettingsConfigDict(env_prefix=ENV_PREFIX)

    config_dir: Path = get_config_dir()
    service_name: str = SERVICE_NAME
    plc_directory: str = "https://plc.directory"
    appview_url: str = "https://public.api.bsky.app"
    oauth_scope: str = "atproto transition:generic"
    request_timeout: float = 15.0
    callback_timeout: float = 300.0
    log_level: str = "WARNING"

    @classmethod
    def load(cls, config_dir: Optional[Path] = None) -> "OnyxSettings":
        """Load settings, with environment variables taking precedence over config.yaml."""
        paths = get_default_paths(config_dir)
        data = {
            key: value
            for key, value in load_yaml(paths.config).items()
            if f"{ENV_PREFIX}{key.upper()}" not in os.environ
        }
        if config_dir is not None:
            data["config_dir"] = Path(config_dir)
        try:
            return cls(**data)
        except pydantic.ValidationError as e:
            raise LocalIOError(f"Invalid settings in {paths.config} or the environment: {e}") from e

    @classmethod
    def file_keys(cls) -> list[str]:
        """Settings that can be kept in config.yaml."""
        return [name for name in cls.model_fields if name != "config_dir"]


def set_config_value(config_dir: Path, key: str, value: str) -> Any:
    """Validate value for the setting and store it in config.yaml.

    Other entries of the file are kept. Raises pydantic.ValidationError for a
    value of the wrong type.
    """
    if key not in OnyxSettings.file_keys():
        raise KeyError(key)
    field = OnyxSettings.model_fields[key]
    adapter = pydantic.TypeAdapter(field.annotation)
    parsed = adapter.dump_python(adapter.validate_python(value), mode="json")

    path = get_default_paths(config_dir).config
    data = load_yaml(path)
    data[key] = parsed
    save_yaml(path, data)
    return parsed
