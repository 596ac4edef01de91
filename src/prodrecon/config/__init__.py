"""Application configuration helpers."""

from __future__ import annotations

from .alerts import AlertConfig, get_alert_config
from .env import optional_env_var, require_env_var, require_env_vars
from .errors import ConfigurationError, FatalConfigError, MissingConfigurationError
from .http_resilience import CacheConfig, RateLimit, ResilienceConfig, RetryPolicy
from .ingest import IngestConfig, get_ingest_config
from .logging import configure_logging
from .matching import MatchingConfig, get_matching_config
from .semantic import SemanticMatchConfig, get_semantic_config
from .sources import PlatformSourceConfig, get_platform_source_config
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config

__all__ = [
    "AlertConfig",
    "CacheConfig",
    "ConfigurationError",
    "DatabaseConfig",
    "FatalConfigError",
    "IngestConfig",
    "MatchingConfig",
    "MissingConfigurationError",
    "PlatformSourceConfig",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "SemanticMatchConfig",
    "StorageConfig",
    "configure_logging",
    "get_alert_config",
    "get_database_config",
    "get_ingest_config",
    "get_matching_config",
    "get_platform_source_config",
    "get_semantic_config",
    "get_storage_config",
    "optional_env_var",
    "require_env_var",
    "require_env_vars",
]
