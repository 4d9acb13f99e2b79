"""Quota enforcement and read-through response caching over shared stores."""

from quotaguard.core.errors import (
    AppError,
    InvalidPolicyError,
    MalformedStoredValueError,
    QuotaExceededError,
    StoreError,
    StoreUnavailableError,
)
from quotaguard.core.policies import DEFAULT_POLICIES, FailurePolicy, WindowPolicy
from quotaguard.core.results import (
    CacheLookup,
    QuotaDecision,
    ReadThroughResult,
    StoreOutcome,
    UsageSnapshot,
)
from quotaguard.services.rate_limiter import RateLimiter
from quotaguard.services.read_through import ReadThroughService
from quotaguard.services.response_cache import (
    ResponseCache,
    derive_key,
    seconds_until_next_utc_day,
    utc_day_epoch,
)
from quotaguard.services.usage_recorder import UsageRecorder

__all__ = [
    "AppError",
    "CacheLookup",
    "DEFAULT_POLICIES",
    "FailurePolicy",
    "InvalidPolicyError",
    "MalformedStoredValueError",
    "QuotaDecision",
    "QuotaExceededError",
    "RateLimiter",
    "ReadThroughResult",
    "ReadThroughService",
    "ResponseCache",
    "StoreError",
    "StoreOutcome",
    "StoreUnavailableError",
    "UsageRecorder",
    "UsageSnapshot",
    "WindowPolicy",
    "derive_key",
    "seconds_until_next_utc_day",
    "utc_day_epoch",
]
