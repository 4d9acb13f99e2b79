"""Value types returned by the quota and cache services.

None of these are persisted. They carry both the answer and a ``degraded``
flag so that a decision taken while a store was failing remains observable
to callers and logs.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class QuotaDecision:
    """Result of a quota check.

    Attributes:
        allowed: Whether the caller may perform the operation now.
        remaining: Events left in the window (``max(0, limit - current_count)``).
        current_count: Events counted inside the sliding window.
        reset_at: UNIX epoch seconds; upper bound on when the oldest counted
            event leaves the window.
        limit: ``max_events`` of the policy that produced this decision.
        checked_at: UNIX epoch seconds when the check ran.
        degraded: True when the decision comes from the failure policy
            instead of a successful store query.
        error: Short description of the store failure when degraded.
    """

    allowed: bool
    remaining: int
    current_count: int
    reset_at: float
    limit: int
    checked_at: float
    degraded: bool = False
    error: str | None = None

    @property
    def retry_after_seconds(self) -> int:
        """Suggested wait in seconds; 0 when the decision allows the call."""
        if self.allowed:
            return 0
        return max(0, int(math.ceil(self.reset_at - self.checked_at)))

    def as_headers(self) -> dict[str, str]:
        """Render the decision as ``X-RateLimit-*`` response headers."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers


@dataclass(frozen=True)
class UsageSnapshot:
    """Per-operation usage figures for one identity."""

    count: int
    limit: int
    remaining: int
    degraded: bool = False


@dataclass(frozen=True)
class StoreOutcome:
    """Outcome of a best-effort store write (usage record, cache put)."""

    ok: bool
    error: str | None = None

    @classmethod
    def success(cls) -> "StoreOutcome":
        return cls(ok=True)

    @classmethod
    def failure(cls, error: str) -> "StoreOutcome":
        return cls(ok=False, error=error)


@dataclass(frozen=True)
class CacheLookup:
    """Outcome of a fail-soft cache read.

    ``reason`` is one of ``hit``, ``not_found``, ``expired``, ``malformed``
    or ``store_error``.
    """

    hit: bool
    value: Any = None
    degraded: bool = False
    reason: str = "not_found"


@dataclass(frozen=True)
class ReadThroughResult:
    """Value produced by the read-through flow and how it was obtained."""

    value: Any
    cached: bool
    decision: QuotaDecision | None = None
    usage: StoreOutcome | None = None
    cache_write: StoreOutcome | None = field(default=None)
