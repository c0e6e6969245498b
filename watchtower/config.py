"""
Centralized configuration for the Watchtower analytics engine.

This module provides a single source of truth for all configuration values.
Configuration is loaded from environment variables with sensible defaults.

Usage:
    from watchtower.config import config

    redis_url = config.cache.url
    ttl = config.ttl.metrics
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class CacheConfig:
    """Redis cache configuration."""

    url: str = field(default_factory=lambda: os.getenv("REDIS_URL", "redis://localhost:6379/0"))
    enabled: bool = field(default_factory=lambda: _env_flag("CACHE_ENABLED", "true"))
    default_ttl: int = field(default_factory=lambda: int(os.getenv("CACHE_DEFAULT_TTL", "3600")))
    key_prefix: str = field(default_factory=lambda: os.getenv("CACHE_KEY_PREFIX", "watchtower"))
    coalesce: bool = field(default_factory=lambda: _env_flag("CACHE_COALESCE", "true"))
    log_hits: bool = field(default_factory=lambda: _env_flag("LOG_CACHE", "false"))
    socket_timeout: float = 5.0
    max_key_length: int = 200


@dataclass(frozen=True)
class CacheTTL:
    """Tiered TTLs (seconds) for different kinds of cached data."""

    very_static: int = 604800    # 7 days - platforms, brands
    static: int = 86400          # 24 hours - categories, locations
    metrics: int = 7200          # 2 hours - aggregated metrics
    computed_heavy: int = 14400  # 4 hours - expensive bulk computations
    realtime: int = 600          # 10 minutes
    short: int = 300             # 5 minutes
    trending: int = 180          # 3 minutes


@dataclass(frozen=True)
class RowStoreConfig:
    """Row store (SQLAlchemy) configuration."""

    url: str = field(
        default_factory=lambda: os.getenv("ROW_STORE_URL", "sqlite:///data/sales.db")
    )
    query_timeout: float = field(
        default_factory=lambda: float(os.getenv("ROW_STORE_TIMEOUT", "30"))
    )


@dataclass(frozen=True)
class ColumnStoreConfig:
    """Column store (DuckDB) configuration."""

    path: str = field(
        default_factory=lambda: os.getenv("COLUMN_STORE_PATH", "data/analytics.duckdb")
    )
    fact_table: str = field(default_factory=lambda: os.getenv("COLUMN_STORE_TABLE", "rb_pdp_olap"))
    region_table: str = "location_regions"
    query_timeout: float = field(
        default_factory=lambda: float(os.getenv("COLUMN_STORE_TIMEOUT", "60"))
    )
    read_only: bool = field(default_factory=lambda: _env_flag("COLUMN_STORE_READ_ONLY", "false"))


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""

    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    json_format: bool = field(default_factory=lambda: _env_flag("LOG_JSON", "false"))


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""

    version: str = "0.3.0"
    cache: CacheConfig = field(default_factory=CacheConfig)
    ttl: CacheTTL = field(default_factory=CacheTTL)
    row_store: RowStoreConfig = field(default_factory=RowStoreConfig)
    column_store: ColumnStoreConfig = field(default_factory=ColumnStoreConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# Global config instance
config = AppConfig()

CACHE_TTL = config.ttl
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def validate_config(app_config: AppConfig = config) -> None:
    """
    Validate that configuration values are usable.

    Call this on application startup to fail fast with clear error messages
    instead of cryptic runtime failures.

    Raises:
        ConfigurationError: If configuration is missing or invalid
    """
    from watchtower.exceptions import ConfigurationError

    errors = []

    if app_config.cache.enabled and not app_config.cache.url.startswith(("redis://", "rediss://", "unix://")):
        errors.append(f"REDIS_URL has an unsupported scheme: {app_config.cache.url}")

    if app_config.cache.default_ttl <= 0:
        errors.append("CACHE_DEFAULT_TTL must be a positive number of seconds")

    if not app_config.cache.key_prefix or ":" in app_config.cache.key_prefix:
        errors.append("CACHE_KEY_PREFIX must be non-empty and must not contain ':'")

    if not app_config.row_store.url:
        errors.append("ROW_STORE_URL is required but not set")

    if not app_config.column_store.path:
        errors.append("COLUMN_STORE_PATH is required but not set")

    if app_config.logging.level.upper() not in VALID_LOG_LEVELS:
        errors.append(f"LOG_LEVEL must be one of {sorted(VALID_LOG_LEVELS)}")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)
