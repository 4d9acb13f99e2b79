"""Quota enforcement dependencies for FastAPI routes.

This module wires the stores and services into the HTTP layer.

Design goals:
- Minimal coupling: routes depend on ``enforce_quota(policy)`` only.
- Swap-friendly: the store backend is chosen by settings behind the
  abstract store interfaces.
- Explicit policies: each route passes its own ``WindowPolicy``.

Store clients are built once per process, and the services wrapping them per
request. Clients are rebuilt when the store configuration changes (primarily
in tests) and the replaced ones are closed; ``close_stores`` closes the
current ones at application shutdown. Clients hold connections, not quota
state: every count and cached value still comes from the store.
"""

from __future__ import annotations

import logging
from typing import Annotated, Awaitable, Callable

from fastapi import Depends, Request

from quotaguard.adapters.stores.base import AbstractCacheStore, AbstractEventStore
from quotaguard.adapters.stores.factory import create_cache_store, create_event_store
from quotaguard.core.config import settings
from quotaguard.core.errors import QuotaExceededError
from quotaguard.core.identity import resolve_identity
from quotaguard.core.logging import hash_identity
from quotaguard.core.policies import FailurePolicy, WindowPolicy
from quotaguard.core.results import QuotaDecision
from quotaguard.services.rate_limiter import RateLimiter
from quotaguard.services.read_through import ReadThroughService
from quotaguard.services.response_cache import ResponseCache
from quotaguard.services.usage_recorder import UsageRecorder

logger = logging.getLogger(__name__)


_stores: tuple[AbstractEventStore, AbstractCacheStore] | None = None
_stores_config: str | None = None


async def _close_all(stores: tuple[AbstractEventStore, AbstractCacheStore]) -> None:
    for store in stores:
        try:
            await store.close()
        except Exception as exc:
            logger.warning(
                "store.close_failed",
                extra={
                    "store": type(store).__name__,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )


async def _get_stores() -> tuple[AbstractEventStore, AbstractCacheStore]:
    """Return process-wide store clients, rebuilding them on config change.

    Replaced clients are closed once the new ones are in place.
    """

    global _stores, _stores_config

    config = settings.store.model_dump_json()
    if _stores is None or _stores_config != config:
        previous = _stores
        _stores = (create_event_store(settings.store), create_cache_store(settings.store))
        _stores_config = config
        if previous is not None:
            await _close_all(previous)
    return _stores


async def close_stores() -> None:
    """Close the process-wide store clients (called at application shutdown)."""

    global _stores, _stores_config

    stores, _stores, _stores_config = _stores, None, None
    if stores is not None:
        await _close_all(stores)


async def get_event_store() -> AbstractEventStore:
    return (await _get_stores())[0]


async def get_cache_store() -> AbstractCacheStore:
    return (await _get_stores())[1]


async def get_rate_limiter(
    store: Annotated[AbstractEventStore, Depends(get_event_store)],
) -> RateLimiter:
    """Build a RateLimiter over the shared event store."""
    return RateLimiter(
        store,
        failure_policy=FailurePolicy(settings.quota.failure_policy),
        timeout_seconds=settings.store.timeout_seconds,
    )


async def get_usage_recorder(
    store: Annotated[AbstractEventStore, Depends(get_event_store)],
) -> UsageRecorder:
    return UsageRecorder(store, timeout_seconds=settings.store.timeout_seconds)


async def get_response_cache(
    store: Annotated[AbstractCacheStore, Depends(get_cache_store)],
) -> ResponseCache:
    return ResponseCache(
        store,
        namespace=settings.cache.namespace,
        default_ttl_seconds=settings.cache.default_ttl_seconds,
        timeout_seconds=settings.store.timeout_seconds,
    )


async def get_read_through_service(
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
    recorder: Annotated[UsageRecorder, Depends(get_usage_recorder)],
    cache: Annotated[ResponseCache, Depends(get_response_cache)],
) -> ReadThroughService:
    """Read-through service for handlers that cache their upstream results."""
    return ReadThroughService(
        limiter=limiter,
        recorder=recorder,
        cache=cache,
        record_in_background=settings.quota.record_in_background,
    )


def enforce_quota(policy: WindowPolicy) -> Callable[..., Awaitable[QuotaDecision | None]]:
    """Create a FastAPI dependency enforcing ``policy`` for the caller.

    The dependency only checks; the route records usage after its upstream
    call succeeds (see ``UsageRecorder`` / ``ReadThroughService``).

    Usage:
        @router.post("/diagnose", dependencies=[Depends(enforce_quota(FREE_DIAGNOSIS))])

    Args:
        policy: Window policy for the protected operation.

    Returns:
        Dependency callable returning the QuotaDecision (None when disabled)
        and storing it on ``request.state.quota``.
    """

    async def _enforce(
        request: Request,
        identity: Annotated[str, Depends(resolve_identity)],
        limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
    ) -> QuotaDecision | None:
        if not settings.quota.enabled:
            return None

        decision = await limiter.check(identity, policy)
        request.state.quota = decision

        log_extra = {
            "identity_hash": hash_identity(identity),
            "operation": policy.operation,
            "limit": decision.limit,
            "remaining": decision.remaining,
            "window_s": policy.window_seconds,
            "degraded": decision.degraded,
        }

        if decision.allowed:
            logger.info("rate_limit.allowed", extra=log_extra)
            return decision

        logger.warning(
            "rate_limit.exceeded",
            extra={**log_extra, "retry_after_s": decision.retry_after_seconds},
        )
        raise QuotaExceededError(decision, policy.operation)

    return _enforce
