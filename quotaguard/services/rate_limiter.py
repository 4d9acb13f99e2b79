"""Sliding-window rate limiter backed by a shared event store.

The limiter keeps no state of its own: every check counts the events the
store holds for ``[now - window_seconds, now]``. Handler instances that
share the store therefore share the quota without talking to each other.

Soft limit:
    The check and the later usage record are two separate store round
    trips. Concurrent requests can all observe ``max_events - 1`` and all be
    allowed, overshooting the limit by up to the number of concurrent
    checks. Callers needing a hard cap must add an atomic reservation
    primitive on top of this limiter.

Failure policy:
    When the event store fails or exceeds its deadline, the decision comes
    from ``FailurePolicy`` (``FAIL_OPEN`` by default) and is flagged
    ``degraded``. The error is logged, never raised.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Iterable

from quotaguard.adapters.stores.base import AbstractEventStore
from quotaguard.core.logging import hash_identity
from quotaguard.core.policies import FailurePolicy, WindowPolicy
from quotaguard.core.results import QuotaDecision, UsageSnapshot

logger = logging.getLogger(__name__)


class RateLimiter:
    """Quota checks against an ``AbstractEventStore``.

    Attributes:
        store: Event store queried on every check.
        failure_policy: Decision used when the store cannot be queried.
    """

    def __init__(
        self,
        store: AbstractEventStore,
        *,
        failure_policy: FailurePolicy = FailurePolicy.FAIL_OPEN,
        timeout_seconds: float | None = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Shared usage event store.
            failure_policy: FAIL_OPEN allows on store errors, FAIL_CLOSED denies.
            timeout_seconds: Deadline for the count query; None disables it.
            clock: Time source returning UNIX time in seconds.
        """
        self.store = store
        self.failure_policy = FailurePolicy(failure_policy)
        self._timeout = timeout_seconds
        self._clock = clock

    async def check(self, identity: str, policy: WindowPolicy) -> QuotaDecision:
        """Decide whether identity may perform ``policy.operation`` now.

        Args:
            identity: Caller key the quota is tracked against.
            policy: Window policy for the operation.

        Returns:
            QuotaDecision. Never raises for store failures.

        Raises:
            ValueError: If identity is empty.
        """
        if not identity:
            raise ValueError("identity must be a non-empty string")

        now = self._clock()
        window_start = now - policy.window_seconds
        reset_at = now + policy.window_seconds

        try:
            current_count = await asyncio.wait_for(
                self.store.count_since(identity, policy.operation, window_start),
                timeout=self._timeout,
            )
        except Exception as exc:
            return self._degraded_decision(identity, policy, now, reset_at, exc)

        decision = QuotaDecision(
            allowed=current_count < policy.max_events,
            remaining=max(0, policy.max_events - current_count),
            current_count=current_count,
            reset_at=reset_at,
            limit=policy.max_events,
            checked_at=now,
        )

        logger.debug(
            "rate_limit.checked",
            extra={
                "identity_hash": hash_identity(identity),
                "operation": policy.operation,
                "current_count": current_count,
                "limit": policy.max_events,
                "window_s": policy.window_seconds,
                "allowed": decision.allowed,
            },
        )
        return decision

    def _degraded_decision(
        self,
        identity: str,
        policy: WindowPolicy,
        now: float,
        reset_at: float,
        exc: Exception,
    ) -> QuotaDecision:
        """Build the failure-policy decision for a failed count query."""
        if isinstance(exc, asyncio.TimeoutError):
            error = f"event store timed out after {self._timeout}s"
        else:
            error = f"{type(exc).__name__}: {exc}"

        fail_open = self.failure_policy is FailurePolicy.FAIL_OPEN
        logger.warning(
            "rate_limit.store_error",
            extra={
                "identity_hash": hash_identity(identity),
                "operation": policy.operation,
                "failure_policy": self.failure_policy.value,
                "error_type": type(exc).__name__,
                "error_msg": error,
            },
        )

        if fail_open:
            return QuotaDecision(
                allowed=True,
                remaining=policy.max_events,
                current_count=0,
                reset_at=reset_at,
                limit=policy.max_events,
                checked_at=now,
                degraded=True,
                error=error,
            )
        return QuotaDecision(
            allowed=False,
            remaining=0,
            current_count=policy.max_events,
            reset_at=reset_at,
            limit=policy.max_events,
            checked_at=now,
            degraded=True,
            error=error,
        )

    async def usage_summary(
        self,
        identity: str,
        policies: Iterable[WindowPolicy],
    ) -> dict[str, UsageSnapshot]:
        """Report current usage for identity across several policies.

        Each policy is checked independently, so the same failure policy
        applies per entry.

        Returns:
            Mapping of operation name to its usage snapshot.
        """
        summary: dict[str, UsageSnapshot] = {}
        for policy in policies:
            decision = await self.check(identity, policy)
            summary[policy.operation] = UsageSnapshot(
                count=decision.current_count,
                limit=policy.max_events,
                remaining=decision.remaining,
                degraded=decision.degraded,
            )
        return summary
