"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ first
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class StoreSettings(BaseSettings):
    """Backing store configuration shared by the event and cache stores."""

    backend: Literal["memory", "sqlite", "supabase"] = Field(
        "memory",
        description="Store backend: memory (tests/dev), sqlite, or supabase (PostgREST)",
    )
    sqlite_path: str = Field(
        "data/quotaguard.db",
        description="SQLite database file used when backend=sqlite",
    )
    supabase_url: str | None = Field(
        None,
        description="Supabase project URL (required when backend=supabase)",
    )
    supabase_key: str | None = Field(
        None,
        description="Supabase service role key (required when backend=supabase)",
    )
    event_table: str = Field(
        "api_usage",
        description="Table holding usage events",
    )
    cache_table: str = Field(
        "response_cache",
        description="Table holding cached responses",
    )
    timeout_seconds: float = Field(
        5.0,
        description="Deadline applied to every store round trip",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
    )


class QuotaSettings(BaseSettings):
    """Quota enforcement behaviour."""

    enabled: bool = Field(
        True,
        description="Enable quota enforcement in the HTTP dependency",
    )
    failure_policy: Literal["open", "closed"] = Field(
        "open",
        description="Decision when the event store is unavailable: open allows, closed denies",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )
    record_in_background: bool = Field(
        False,
        description="Record usage without awaiting the store write",
    )

    model_config = SettingsConfigDict(
        env_prefix="QUOTA_",
        case_sensitive=False,
    )


class CacheSettings(BaseSettings):
    """Response cache defaults."""

    default_ttl_seconds: int = Field(
        86400,
        description="TTL applied when callers don't supply one",
        ge=1,
    )
    namespace: str = Field(
        "cache",
        description="Default namespace prefix for derived cache keys",
    )

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field("json", description="Log line format")
    output: Literal["stdout", "file"] = Field("stdout", description="Log destination")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10_000_000,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read/propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


def _build_store_settings() -> StoreSettings:
    return StoreSettings()  # type: ignore[call-arg]


def _build_quota_settings() -> QuotaSettings:
    return QuotaSettings()  # type: ignore[call-arg]


def _build_cache_settings() -> CacheSettings:
    return CacheSettings()  # type: ignore[call-arg]


def _build_log_settings() -> LogSettings:
    return LogSettings()  # type: ignore[call-arg]


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    store: StoreSettings = Field(default_factory=_build_store_settings)
    quota: QuotaSettings = Field(default_factory=_build_quota_settings)
    cache: CacheSettings = Field(default_factory=_build_cache_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
settings = Settings()
