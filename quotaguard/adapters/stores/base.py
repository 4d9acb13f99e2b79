"""Store interfaces for usage events and cached responses.

Services depend on these abstractions, not on a concrete backend, so the
same limiter and cache run against SQLite locally and Supabase in
production. Every method is a single store round trip and may suspend.

Adapters must raise ``StoreUnavailableError`` for connectivity problems and
``MalformedStoredValueError`` for rows they cannot interpret. Anything else
escaping an adapter is a bug in that adapter.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class UsageEvent:
    """One quota-consuming action. Immutable once written."""

    identity: str
    operation: str
    occurred_at: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CacheEntry:
    """A cached, already-serialized value with its expiry.

    The entry is logically absent once ``now >= expires_at`` even if the row
    still exists physically.
    """

    key: str
    value: str
    created_at: float
    expires_at: float

    def is_live(self, now: float) -> bool:
        return now < self.expires_at


class AbstractEventStore(ABC):
    """Append-only usage event log."""

    @abstractmethod
    async def insert(self, event: UsageEvent) -> None:
        """Append one event."""
        raise NotImplementedError

    @abstractmethod
    async def count_since(self, identity: str, operation: str, since: float) -> int:
        """Count events for identity/operation with ``occurred_at >= since``.

        Args:
            identity: Caller identity.
            operation: Operation name.
            since: Inclusive lower bound, UNIX epoch seconds.

        Returns:
            Number of matching events (>= 0).
        """
        raise NotImplementedError

    async def close(self) -> None:
        """Release backend resources. No-op by default."""


class AbstractCacheStore(ABC):
    """Key-value store with per-entry expiry and atomic replace-by-key."""

    @abstractmethod
    async def upsert(self, entry: CacheEntry) -> None:
        """Insert or atomically replace the entry stored under ``entry.key``."""
        raise NotImplementedError

    @abstractmethod
    async def get_live(self, key: str, now: float) -> CacheEntry | None:
        """Return the entry for key only when ``expires_at > now``."""
        raise NotImplementedError

    @abstractmethod
    async def purge_expired(self, now: float) -> int:
        """Delete entries with ``expires_at <= now`` and return how many."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release backend resources. No-op by default."""
