"""Client configuration loader.

Loads configuration from data/config/client_config_v1.yaml with fallback
to built-in defaults. The API base URL can be overridden with the
LEARNSYNC_API_URL environment variable.

Usage:
    from learnsync.config.app_config import load_client_config

    config = load_client_config()
    print(config.api.base_url)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

logger = structlog.get_logger(__name__)

# Config file path (relative to project root)
CONFIG_FILE = Path("data/config/client_config_v1.yaml")

API_URL_ENV = "LEARNSYNC_API_URL"


class ConfigError(Exception):
    """Invalid configuration value."""

    pass


@dataclass
class ApiConfig:
    """Backend connection settings."""

    base_url: str = "http://localhost:5000/api"
    # None = httpx transport default
    timeout_seconds: float | None = None


@dataclass
class SessionConfig:
    """Session lifecycle settings."""

    refresh_interval_seconds: float = 600.0


@dataclass
class FetchConfig:
    """Collection query settings."""

    debounce_seconds: float = 0.2
    default_page_size: int = 12
    # Transient failures of idempotent requests (network, 5xx)
    max_attempts: int = 3
    retry_delay_seconds: float = 1.0


@dataclass
class PlaybackConfig:
    """Video playback sampling settings."""

    sample_interval_seconds: float = 5.0


@dataclass
class StorageConfig:
    """Credential storage locations."""

    db_path: str = "db/learnsync.db"
    state_dir: str = "data/state"


@dataclass
class ClientConfig:
    """Client-wide configuration."""

    api: ApiConfig = field(default_factory=ApiConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    playback: PlaybackConfig = field(default_factory=PlaybackConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


# Module-level cache
_cached_config: ClientConfig | None = None


def _positive(section: str, name: str, value: Any) -> float:
    """Coerce a config value to a positive float or raise ConfigError."""
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{section}.{name} must be a number, got {value!r}") from e
    if number <= 0:
        raise ConfigError(f"{section}.{name} must be positive, got {number}")
    return number


def _parse_config(data: dict[str, Any]) -> ClientConfig:
    """Parse configuration dictionary into ClientConfig object."""
    defaults = ClientConfig()

    api_data = data.get("api") or {}
    timeout = api_data.get("timeout_seconds")
    api = ApiConfig(
        base_url=str(api_data.get("base_url", defaults.api.base_url)).rstrip("/"),
        timeout_seconds=(
            _positive("api", "timeout_seconds", timeout) if timeout is not None else None
        ),
    )

    session_data = data.get("session") or {}
    session = SessionConfig(
        refresh_interval_seconds=_positive(
            "session",
            "refresh_interval_seconds",
            session_data.get(
                "refresh_interval_seconds", defaults.session.refresh_interval_seconds
            ),
        ),
    )

    fetch_data = data.get("fetch") or {}
    debounce = fetch_data.get("debounce_seconds", defaults.fetch.debounce_seconds)
    if not isinstance(debounce, (int, float)) or debounce < 0:
        raise ConfigError(f"fetch.debounce_seconds must be >= 0, got {debounce!r}")
    retry_delay = fetch_data.get("retry_delay_seconds", defaults.fetch.retry_delay_seconds)
    if not isinstance(retry_delay, (int, float)) or retry_delay < 0:
        raise ConfigError(f"fetch.retry_delay_seconds must be >= 0, got {retry_delay!r}")
    fetch = FetchConfig(
        debounce_seconds=float(debounce),
        default_page_size=int(
            _positive(
                "fetch",
                "default_page_size",
                fetch_data.get("default_page_size", defaults.fetch.default_page_size),
            )
        ),
        max_attempts=int(
            _positive(
                "fetch",
                "max_attempts",
                fetch_data.get("max_attempts", defaults.fetch.max_attempts),
            )
        ),
        retry_delay_seconds=float(retry_delay),
    )

    playback_data = data.get("playback") or {}
    playback = PlaybackConfig(
        sample_interval_seconds=_positive(
            "playback",
            "sample_interval_seconds",
            playback_data.get(
                "sample_interval_seconds", defaults.playback.sample_interval_seconds
            ),
        ),
    )

    storage_data = data.get("storage") or {}
    storage = StorageConfig(
        db_path=storage_data.get("db_path", defaults.storage.db_path),
        state_dir=storage_data.get("state_dir", defaults.storage.state_dir),
    )

    return ClientConfig(
        api=api,
        session=session,
        fetch=fetch,
        playback=playback,
        storage=storage,
    )


def load_client_config(
    config_path: Path | None = None,
    force_reload: bool = False,
) -> ClientConfig:
    """Load client config, falling back to defaults when no file exists.

    Args:
        config_path: Override config file location.
        force_reload: If True, ignore cached config and reload from file.

    Returns:
        ClientConfig object with all settings.

    Raises:
        ConfigError: If the file contains invalid values.
    """
    global _cached_config

    if _cached_config is not None and not force_reload and config_path is None:
        return _cached_config

    path = config_path or CONFIG_FILE
    data: dict[str, Any]

    if path.exists():
        logger.debug("loading_client_config", source=str(path))
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping at top level")
    else:
        logger.info("using_default_config")
        data = {}

    env_url = os.environ.get(API_URL_ENV)
    if env_url:
        data.setdefault("api", {})
        data["api"] = {**(data["api"] or {}), "base_url": env_url}

    config = _parse_config(data)
    if config_path is None:
        _cached_config = config
    return config


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when config is modified at runtime.
    """
    global _cached_config
    _cached_config = None
