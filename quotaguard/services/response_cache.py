"""Read-through response cache on top of a shared cache store.

Keys are derived deterministically from a namespace, order-independent
inputs and a coarse epoch (the UTC day by default), so identical requests
from any handler instance land on the same row and rotate on schedule
without an explicit purge.

Reads fail soft (any problem is a miss) and writes are best-effort (any
problem is logged and reported through ``StoreOutcome``). Concurrent
misses for one key are not coalesced: each computes and upserts, and the
last write wins.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta, timezone
from hashlib import sha256
from typing import Any, Callable

from pydantic import BaseModel, TypeAdapter, ValidationError

from quotaguard.adapters.stores.base import AbstractCacheStore, CacheEntry
from quotaguard.core.results import CacheLookup, StoreOutcome

logger = logging.getLogger(__name__)

_KEY_DIGEST_CHARS = 32


def _encode(item: Any) -> str:
    return json.dumps(item, sort_keys=True, separators=(",", ":"))


def _canonicalize(canonical_inputs: Iterable[Any] | Mapping[Any, Any] | str) -> str:
    """Render inputs as a stable string regardless of their order.

    Every item (or key/value pair) is JSON-encoded on its own before sorting,
    so ``1`` and ``"1"`` stay distinct and mappings may mix key types.

    Raises:
        TypeError: If an item is not JSON-serializable.
    """
    if isinstance(canonical_inputs, str):
        return _encode([canonical_inputs])
    if isinstance(canonical_inputs, Mapping):
        pairs = sorted(_encode([key, value]) for key, value in canonical_inputs.items())
        return "{" + ",".join(pairs) + "}"
    return "[" + ",".join(sorted(_encode(item) for item in canonical_inputs)) + "]"


def derive_key(
    namespace: str,
    canonical_inputs: Iterable[Any] | Mapping[Any, Any] | str,
    epoch: str,
) -> str:
    """Build the cache key for a request.

    Args:
        namespace: Logical cache partition (e.g. ``article_images``).
        canonical_inputs: JSON-serializable request inputs. Collections are
            sorted and mappings are ordered by pair before hashing, so
            permutations of the same set map to the same key.
        epoch: Coarse time bucket such as ``utc_day_epoch()``.

    Returns:
        ``"{namespace}:{epoch}:{digest}"``, identical across processes for
        identical arguments.

    Raises:
        ValueError: If namespace or epoch is empty.
        TypeError: If an input is not JSON-serializable.

    Examples:
        >>> derive_key("cache", ["b", "a"], "2024-01-01") == derive_key("cache", ["a", "b"], "2024-01-01")
        True
    """
    if not namespace:
        raise ValueError("namespace must be a non-empty string")
    if not epoch:
        raise ValueError("epoch must be a non-empty string")

    hasher = sha256()
    hasher.update(namespace.encode())
    hasher.update(b"\x00")
    hasher.update(epoch.encode())
    hasher.update(b"\x00")
    hasher.update(_canonicalize(canonical_inputs).encode("utf-8"))
    return f"{namespace}:{epoch}:{hasher.hexdigest()[:_KEY_DIGEST_CHARS]}"


def utc_day_epoch(now: float | None = None) -> str:
    """Current calendar day in UTC as ``YYYY-MM-DD``."""
    ts = time.time() if now is None else now
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


def seconds_until_next_utc_day(now: float | None = None) -> int:
    """Seconds from now to the next UTC midnight (at least 1)."""
    ts = time.time() if now is None else now
    current = datetime.fromtimestamp(ts, tz=timezone.utc)
    tomorrow = (current + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return max(1, int((tomorrow - current).total_seconds()))


def _serialize(value: Any) -> str:
    if isinstance(value, BaseModel):
        return value.model_dump_json()
    return json.dumps(value, separators=(",", ":"), allow_nan=False)


class ResponseCache:
    """Typed, fail-soft facade over an ``AbstractCacheStore``.

    Attributes:
        store: Shared cache store.
        namespace: Namespace ``key_for`` uses when none is given.
        default_ttl_seconds: Lifetime ``put`` applies when none is given.
    """

    def __init__(
        self,
        store: AbstractCacheStore,
        *,
        namespace: str = "cache",
        default_ttl_seconds: int = 86400,
        timeout_seconds: float | None = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.namespace = namespace
        self.default_ttl_seconds = default_ttl_seconds
        self._timeout = timeout_seconds
        self._clock = clock

    def key_for(
        self,
        canonical_inputs: Iterable[Any] | Mapping[Any, Any] | str,
        *,
        namespace: str | None = None,
        epoch: str | None = None,
    ) -> str:
        """``derive_key`` with this cache's namespace and the current UTC day."""
        return derive_key(
            namespace or self.namespace,
            canonical_inputs,
            epoch or utc_day_epoch(self._clock()),
        )

    def _describe(self, exc: Exception) -> str:
        if isinstance(exc, asyncio.TimeoutError):
            return f"cache store timed out after {self._timeout}s"
        return f"{type(exc).__name__}: {exc}"

    async def lookup(self, key: str, *, expect: Any = None) -> CacheLookup:
        """Read key and report how the read went.

        Args:
            key: Cache key (see ``derive_key``).
            expect: Optional type the value must validate against (any type
                accepted by ``pydantic.TypeAdapter``, e.g. a model class).

        Returns:
            CacheLookup; ``hit`` is True only for a live, decodable value.
        """
        now = self._clock()
        try:
            entry = await asyncio.wait_for(self.store.get_live(key, now), timeout=self._timeout)
        except Exception as exc:
            logger.warning(
                "cache.read_failed",
                extra={
                    "cache_key": key,
                    "error_type": type(exc).__name__,
                    "error_msg": self._describe(exc),
                },
            )
            return CacheLookup(hit=False, degraded=True, reason="store_error")

        if entry is None:
            logger.debug("cache.miss", extra={"cache_key": key, "reason": "not_found"})
            return CacheLookup(hit=False, reason="not_found")

        # Stores filter on expiry too; recheck against our own clock.
        if not entry.is_live(now):
            logger.debug("cache.miss", extra={"cache_key": key, "reason": "expired"})
            return CacheLookup(hit=False, reason="expired")

        try:
            value = json.loads(entry.value)
            if expect is not None:
                value = TypeAdapter(expect).validate_python(value)
        except (json.JSONDecodeError, TypeError, ValidationError, RecursionError) as exc:
            logger.warning(
                "cache.malformed_value",
                extra={
                    "cache_key": key,
                    "error_type": type(exc).__name__,
                },
            )
            return CacheLookup(hit=False, degraded=True, reason="malformed")

        logger.debug("cache.hit", extra={"cache_key": key})
        return CacheLookup(hit=True, value=value, reason="hit")

    async def get(self, key: str, *, expect: Any = None) -> Any | None:
        """Return the cached value for key, or None on a miss.

        Never raises for store or decoding problems.
        """
        result = await self.lookup(key, expect=expect)
        return result.value if result.hit else None

    async def put(self, key: str, value: Any, ttl_seconds: int | None = None) -> StoreOutcome:
        """Insert or replace key with value, expiring ``ttl_seconds`` from now.

        The previous value (if any) is replaced whole; nothing is merged.

        Args:
            key: Cache key.
            value: JSON-serializable value or pydantic model.
            ttl_seconds: Lifetime in seconds (>= 1); ``default_ttl_seconds`` when None.

        Returns:
            StoreOutcome; failures are logged and never raised.
        """
        if ttl_seconds is None:
            ttl_seconds = self.default_ttl_seconds
        if ttl_seconds < 1:
            logger.warning("cache.write_rejected", extra={"cache_key": key, "reason": "ttl_lt_1"})
            return StoreOutcome.failure("ttl_seconds must be >= 1")

        try:
            payload = _serialize(value)
        except (TypeError, ValueError, RecursionError) as exc:
            logger.warning(
                "cache.write_rejected",
                extra={
                    "cache_key": key,
                    "reason": "unserializable",
                    "error_type": type(exc).__name__,
                },
            )
            return StoreOutcome.failure(f"value is not JSON-serializable: {exc}")

        now = self._clock()
        entry = CacheEntry(key=key, value=payload, created_at=now, expires_at=now + ttl_seconds)

        try:
            await asyncio.wait_for(self.store.upsert(entry), timeout=self._timeout)
        except Exception as exc:
            error = self._describe(exc)
            logger.warning(
                "cache.write_failed",
                extra={
                    "cache_key": key,
                    "error_type": type(exc).__name__,
                    "error_msg": error,
                },
            )
            return StoreOutcome.failure(error)

        logger.debug(
            "cache.set",
            extra={
                "cache_key": key,
                "ttl_s": ttl_seconds,
                "size_bytes": len(payload),
            },
        )
        return StoreOutcome.success()

    async def purge_expired(self) -> int:
        """Eagerly delete expired rows. Returns 0 if the store call fails."""
        try:
            purged = await asyncio.wait_for(
                self.store.purge_expired(self._clock()),
                timeout=self._timeout,
            )
        except Exception as exc:
            logger.warning(
                "cache.purge_failed",
                extra={
                    "error_type": type(exc).__name__,
                    "error_msg": self._describe(exc),
                },
            )
            return 0

        logger.info("cache.purged", extra={"purged": purged})
        return purged
