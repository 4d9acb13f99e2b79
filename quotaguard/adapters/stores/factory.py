"""Factory functions for creating store instances from settings."""

from __future__ import annotations

from quotaguard.adapters.stores.base import AbstractCacheStore, AbstractEventStore
from quotaguard.adapters.stores.in_memory import InMemoryCacheStore, InMemoryEventStore
from quotaguard.adapters.stores.sqlite import SqliteCacheStore, SqliteEventStore
from quotaguard.adapters.stores.supabase import SupabaseCacheStore, SupabaseEventStore
from quotaguard.core.config import StoreSettings, settings
from quotaguard.core.errors import ValidationAppError


def _require_supabase(cfg: StoreSettings) -> tuple[str, str]:
    if not cfg.supabase_url or not cfg.supabase_key:
        raise ValidationAppError(
            code="store_missing_credentials",
            message="Supabase backend requires STORE_SUPABASE_URL and STORE_SUPABASE_KEY",
            details={"backend": "supabase"},
        )
    return cfg.supabase_url, cfg.supabase_key


def create_event_store(cfg: StoreSettings | None = None) -> AbstractEventStore:
    """Instantiate the configured usage event store.

    Args:
        cfg: Store settings; defaults to the global settings.

    Returns:
        AbstractEventStore: Store for the configured backend.

    Raises:
        ValidationAppError: If backend-specific requirements are not met.
    """
    cfg = cfg or settings.store

    if cfg.backend == "memory":
        return InMemoryEventStore()

    if cfg.backend == "sqlite":
        return SqliteEventStore(cfg.sqlite_path, table=cfg.event_table)

    if cfg.backend == "supabase":
        url, key = _require_supabase(cfg)
        return SupabaseEventStore(
            url=url,
            service_key=key,
            table=cfg.event_table,
            timeout_seconds=cfg.timeout_seconds,
        )

    raise ValidationAppError(
        code="store_unknown_backend",
        message=f"Unknown store backend: '{cfg.backend}'. Supported: memory, sqlite, supabase",
    )


def create_cache_store(cfg: StoreSettings | None = None) -> AbstractCacheStore:
    """Instantiate the configured response cache store.

    See ``create_event_store`` for argument and error semantics.
    """
    cfg = cfg or settings.store

    if cfg.backend == "memory":
        return InMemoryCacheStore()

    if cfg.backend == "sqlite":
        return SqliteCacheStore(cfg.sqlite_path, table=cfg.cache_table)

    if cfg.backend == "supabase":
        url, key = _require_supabase(cfg)
        return SupabaseCacheStore(
            url=url,
            service_key=key,
            table=cfg.cache_table,
            timeout_seconds=cfg.timeout_seconds,
        )

    raise ValidationAppError(
        code="store_unknown_backend",
        message=f"Unknown store backend: '{cfg.backend}'. Supported: memory, sqlite, supabase",
    )
