"""Application configuration helpers."""

from __future__ import annotations

from .env import optional_int_env, require_env_var, require_env_vars
from .errors import ConfigurationError, InvalidConfigurationValueError, MissingConfigurationError
from .http_resilience import CacheConfig, RateLimit, ResilienceConfig, RetryPolicy
from .importing import ImportConfig, ImportLimits, get_import_config, get_schema_path
from .logging import configure_logging
from .media import MediaConfig, get_media_config
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config

__all__ = [
    "CacheConfig",
    "ConfigurationError",
    "DatabaseConfig",
    "ImportConfig",
    "ImportLimits",
    "InvalidConfigurationValueError",
    "MediaConfig",
    "MissingConfigurationError",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "StorageConfig",
    "configure_logging",
    "get_database_config",
    "get_import_config",
    "get_media_config",
    "get_schema_path",
    "get_storage_config",
    "optional_int_env",
    "require_env_var",
    "require_env_vars",
]
