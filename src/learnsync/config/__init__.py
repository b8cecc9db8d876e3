"""Configuration package for learnsync."""

from learnsync.config.app_config import (
    ApiConfig,
    ClientConfig,
    ConfigError,
    FetchConfig,
    PlaybackConfig,
    SessionConfig,
    StorageConfig,
    clear_config_cache,
    load_client_config,
)

__all__ = [
    "ApiConfig",
    "ClientConfig",
    "ConfigError",
    "FetchConfig",
    "PlaybackConfig",
    "SessionConfig",
    "StorageConfig",
    "clear_config_cache",
    "load_client_config",
]
