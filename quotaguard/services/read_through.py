"""Read-through orchestration for quota-guarded upstream calls.

This is the flow every expensive handler follows:

1. Return a cached value if one is live (no quota consumed).
2. Check the caller's quota; reject with ``QuotaExceededError`` when spent.
3. Run the upstream computation.
4. Record usage (awaited or in the background).
5. Write the result back to the cache (best-effort).
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from quotaguard.core.errors import QuotaExceededError
from quotaguard.core.logging import hash_identity
from quotaguard.core.policies import WindowPolicy
from quotaguard.core.results import ReadThroughResult
from quotaguard.services.rate_limiter import RateLimiter
from quotaguard.services.response_cache import ResponseCache
from quotaguard.services.usage_recorder import UsageRecorder

logger = logging.getLogger(__name__)


class ReadThroughService:
    """Combines limiter, recorder and cache around one upstream call.

    Attributes:
        limiter: Quota checks.
        recorder: Usage event writes.
        cache: Response cache.
        record_in_background: Schedule usage writes instead of awaiting them.
    """

    def __init__(
        self,
        *,
        limiter: RateLimiter,
        recorder: UsageRecorder,
        cache: ResponseCache,
        record_in_background: bool = False,
    ) -> None:
        self.limiter = limiter
        self.recorder = recorder
        self.cache = cache
        self.record_in_background = record_in_background

    async def run(
        self,
        *,
        identity: str,
        policy: WindowPolicy,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        ttl_seconds: int | None = None,
        metadata: dict[str, Any] | None = None,
        expect: Any = None,
    ) -> ReadThroughResult:
        """Serve key from cache or compute it under identity's quota.

        Args:
            identity: Caller key the quota is tracked against.
            policy: Window policy for the upstream operation.
            key: Cache key for the request (see ``derive_key``).
            compute: Coroutine factory performing the upstream call.
            ttl_seconds: Cache lifetime for a freshly computed value; the
                cache's ``default_ttl_seconds`` when None.
            metadata: Opaque context stored with the usage event.
            expect: Optional type cached values must validate against.

        Returns:
            ReadThroughResult with the value and how it was obtained.

        Raises:
            QuotaExceededError: If the quota for ``policy.operation`` is spent.
            Exception: Anything raised by ``compute`` propagates unchanged;
                no usage is recorded and nothing is cached in that case.
        """
        cached = await self.cache.lookup(key, expect=expect)
        if cached.hit:
            return ReadThroughResult(value=cached.value, cached=True)

        decision = await self.limiter.check(identity, policy)
        if not decision.allowed:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "identity_hash": hash_identity(identity),
                    "operation": policy.operation,
                    "limit": decision.limit,
                    "current_count": decision.current_count,
                    "retry_after_s": decision.retry_after_seconds,
                },
            )
            raise QuotaExceededError(decision, policy.operation)

        value = await compute()

        usage = None
        if self.record_in_background:
            self.recorder.record_nowait(identity, policy.operation, metadata)
        else:
            usage = await self.recorder.record(identity, policy.operation, metadata)

        cache_write = await self.cache.put(key, value, ttl_seconds)

        return ReadThroughResult(
            value=value,
            cached=False,
            decision=decision,
            usage=usage,
            cache_write=cache_write,
        )
