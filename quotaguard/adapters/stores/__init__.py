"""Event and cache store adapters.

Services depend on ``AbstractEventStore`` / ``AbstractCacheStore`` only; the
backend (memory, SQLite, Supabase) is picked by the factory from settings.
"""

from quotaguard.adapters.stores.base import (
    AbstractCacheStore,
    AbstractEventStore,
    CacheEntry,
    UsageEvent,
)
from quotaguard.adapters.stores.factory import create_cache_store, create_event_store
from quotaguard.adapters.stores.in_memory import InMemoryCacheStore, InMemoryEventStore
from quotaguard.adapters.stores.sqlite import SqliteCacheStore, SqliteEventStore
from quotaguard.adapters.stores.supabase import SupabaseCacheStore, SupabaseEventStore

__all__ = [
    "AbstractCacheStore",
    "AbstractEventStore",
    "CacheEntry",
    "InMemoryCacheStore",
    "InMemoryEventStore",
    "SqliteCacheStore",
    "SqliteEventStore",
    "SupabaseCacheStore",
    "SupabaseEventStore",
    "UsageEvent",
    "create_cache_store",
    "create_event_store",
]
