"""Tests for store selection from settings."""

from pathlib import Path

import pytest

from quotaguard.adapters.stores import (
    InMemoryCacheStore,
    InMemoryEventStore,
    SqliteCacheStore,
    SqliteEventStore,
    SupabaseCacheStore,
    SupabaseEventStore,
    create_cache_store,
    create_event_store,
)
from quotaguard.core.config import StoreSettings
from quotaguard.core.errors import ValidationAppError


def test_memory_backend() -> None:
    cfg = StoreSettings(backend="memory")

    assert isinstance(create_event_store(cfg), InMemoryEventStore)
    assert isinstance(create_cache_store(cfg), InMemoryCacheStore)


def test_sqlite_backend(tmp_path: Path) -> None:
    cfg = StoreSettings(backend="sqlite", sqlite_path=str(tmp_path / "quota.db"))

    assert isinstance(create_event_store(cfg), SqliteEventStore)
    assert isinstance(create_cache_store(cfg), SqliteCacheStore)


@pytest.mark.asyncio
async def test_supabase_backend() -> None:
    cfg = StoreSettings(
        backend="supabase",
        supabase_url="https://project.supabase.co",
        supabase_key="service-key",
    )

    events = create_event_store(cfg)
    cache = create_cache_store(cfg)

    assert isinstance(events, SupabaseEventStore)
    assert isinstance(cache, SupabaseCacheStore)
    await events.close()
    await cache.close()


@pytest.mark.parametrize("factory", [create_event_store, create_cache_store])
def test_supabase_without_credentials_is_rejected(factory) -> None:
    cfg = StoreSettings(backend="supabase", supabase_url=None, supabase_key=None)

    with pytest.raises(ValidationAppError) as exc_info:
        factory(cfg)

    assert exc_info.value.code == "store_missing_credentials"


def test_factory_defaults_to_global_settings() -> None:
    # conftest pins STORE_BACKEND=memory
    assert isinstance(create_event_store(), InMemoryEventStore)
