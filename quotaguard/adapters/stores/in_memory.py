"""In-memory event and cache stores.

Notes:
- Per-process only: separate workers do not share these stores, so they do
  not provide the cross-instance coordination the services are designed
  for. Use them for tests and single-process development.
- Thread-safe: uses a lock around shared state, which also makes every
  operation atomic the way a database statement would be.
"""

from __future__ import annotations

import threading

from quotaguard.adapters.stores.base import (
    AbstractCacheStore,
    AbstractEventStore,
    CacheEntry,
    UsageEvent,
)


class InMemoryEventStore(AbstractEventStore):
    """Event log held in a Python list."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._events: list[UsageEvent] = []

    async def insert(self, event: UsageEvent) -> None:
        with self._lock:
            self._events.append(event)

    async def count_since(self, identity: str, operation: str, since: float) -> int:
        with self._lock:
            return sum(
                1
                for event in self._events
                if event.identity == identity
                and event.operation == operation
                and event.occurred_at >= since
            )

    def events(self) -> list[UsageEvent]:
        """Snapshot of every stored event, oldest first."""
        with self._lock:
            return list(self._events)


class InMemoryCacheStore(AbstractCacheStore):
    """Cache rows held in a dict keyed by cache key.

    Expired rows are kept until ``purge_expired`` runs, mirroring a database
    table that is reaped lazily.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._rows: dict[str, CacheEntry] = {}

    async def upsert(self, entry: CacheEntry) -> None:
        with self._lock:
            self._rows[entry.key] = entry

    async def get_live(self, key: str, now: float) -> CacheEntry | None:
        with self._lock:
            entry = self._rows.get(key)
        if entry is None or entry.expires_at <= now:
            return None
        return entry

    async def purge_expired(self, now: float) -> int:
        with self._lock:
            expired_keys = [k for k, entry in self._rows.items() if entry.expires_at <= now]
            for key in expired_keys:
                del self._rows[key]
            return len(expired_keys)

    def raw(self, key: str) -> CacheEntry | None:
        """Physical row for key, expired or not."""
        with self._lock:
            return self._rows.get(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)
