"""
Configuration management for versionscout.
Loads and validates settings from YAML files and environment variables.
"""

import os
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

ENV_PREFIX = "VERSIONSCOUT_"


class GeneralConfig(BaseModel):
    """General configuration."""

    project_name: str = "versionscout"
    log_level: str = "INFO"
    logs_dir: str | None = None  # None = log to stderr only
    json_logs: bool = True


class AccountConfig(BaseModel):
    """Versionista account credentials."""

    model_config = ConfigDict(extra="forbid")

    email: str = ""
    password: str = ""


class ServiceConfig(BaseModel):
    """Where the change-tracking service lives and how we present ourselves."""

    base_url: str = "https://versionista.com"
    archive_base_url: str = "https://s3.amazonaws.com/versionista-packs"
    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_12_3) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/56.0.2924.87 Safari/537.36"
    )
    request_timeout: float = 60.0


class ClientConfig(BaseModel):
    """Request scheduler configuration.

    The service has abuse protection that kicks in under sustained load, so
    requests are capped in number and periodically paused.
    """

    model_config = ConfigDict(extra="forbid")

    max_concurrent: int = Field(default=6, ge=1, description="Maximum requests in flight")
    sleep_every: int = Field(
        default=40, description="Pause dispatch after this many completed requests (<=0 disables)"
    )
    sleep_for: float = Field(default=1.0, ge=0, description="Length of each pause in seconds")
    max_retries: int = Field(default=3, ge=0, description="Retries per request")


class ContentConfig(BaseModel):
    """Content, diff and archive retrieval configuration."""

    cache_expired_retries: int = 2
    default_diff_type: str = "only"
    archive_poll_interval: float = 1.0
    archive_poll_timeout: float = 300.0


class WindowConfig(BaseModel):
    """Capture-time window used to filter versions."""

    after: datetime | None = None
    before: datetime | None = None


class Settings(BaseModel):
    """Main settings container."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    account: AccountConfig = Field(default_factory=AccountConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
    content: ContentConfig = Field(default_factory=ContentConfig)
    window: WindowConfig = Field(default_factory=WindowConfig)


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary.
        override: Override dictionary.

    Returns:
        Merged dictionary.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _load_yaml_config(config_dir: Path) -> dict[str, Any]:
    """Load settings.yaml with local.yaml overrides.

    local.yaml holds machine-specific values (credentials, mostly) and is not
    meant to be committed. Its top-level ``settings`` key mirrors settings.yaml.

    Args:
        config_dir: Configuration directory path.

    Returns:
        Merged configuration dictionary.
    """
    config = _load_yaml_file(config_dir / "settings.yaml")
    local_overrides = _load_yaml_file(config_dir / "local.yaml")
    if "settings" in local_overrides:
        config = _deep_merge(config, local_overrides["settings"])
    return config


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides.

    Environment variables should be prefixed with VERSIONSCOUT_ and use
    double underscores for nested keys.

    Example:
        VERSIONSCOUT_CLIENT__MAX_CONCURRENT=4

    Args:
        config: Configuration dictionary.

    Returns:
        Configuration with environment overrides.
    """
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX) or key == f"{ENV_PREFIX}CONFIG_DIR":
            continue

        key_path = key[len(ENV_PREFIX) :].lower().split("__")

        current = config
        for part in key_path[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        # Leave type coercion to pydantic, except for booleans written in any case
        final_key = key_path[-1]
        if value.lower() in ("true", "false"):
            current[final_key] = value.lower() == "true"
        else:
            current[final_key] = value

    return config


def get_config_dir() -> Path:
    """Get the configuration directory."""
    return Path(os.environ.get(f"{ENV_PREFIX}CONFIG_DIR", "config"))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get application settings.

    Settings are loaded from:
    1. Default values
    2. YAML configuration files
    3. Environment variables (highest priority)

    Returns:
        Settings instance.
    """
    config = _load_yaml_config(get_config_dir())
    config = _apply_env_overrides(config)
    return Settings(**config)
