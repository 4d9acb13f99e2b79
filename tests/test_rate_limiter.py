"""Unit tests for the sliding-window RateLimiter."""

import asyncio
import logging

import pytest

from quotaguard.adapters.stores.base import AbstractEventStore, UsageEvent
from quotaguard.adapters.stores.in_memory import InMemoryEventStore
from quotaguard.core.errors import MalformedStoredValueError, StoreUnavailableError
from quotaguard.core.policies import FailurePolicy, WindowPolicy
from quotaguard.services.rate_limiter import RateLimiter

DAILY = WindowPolicy(max_events=10, window_seconds=86400, operation="x")


class FailingEventStore(AbstractEventStore):
    """Event store whose queries always fail."""

    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    async def insert(self, event: UsageEvent) -> None:
        raise self.exc

    async def count_since(self, identity: str, operation: str, since: float) -> int:
        raise self.exc


class HangingEventStore(AbstractEventStore):
    """Event store whose queries never answer in time."""

    async def insert(self, event: UsageEvent) -> None:
        await asyncio.sleep(10)

    async def count_since(self, identity: str, operation: str, since: float) -> int:
        await asyncio.sleep(10)
        return 0


async def _seed(store: InMemoryEventStore, identity: str, operation: str, times: list[float]) -> None:
    for ts in times:
        await store.insert(UsageEvent(identity=identity, operation=operation, occurred_at=ts))


@pytest.mark.asyncio
async def test_ten_events_in_last_hour_blocks(event_store, clock) -> None:
    now = clock()
    await _seed(event_store, "u1", "x", [now - 3600 + i * 60 for i in range(10)])
    limiter = RateLimiter(event_store, clock=clock)

    decision = await limiter.check("u1", DAILY)

    assert decision.allowed is False
    assert decision.remaining == 0
    assert decision.current_count == 10
    assert decision.degraded is False
    assert decision.retry_after_seconds == 86400


@pytest.mark.asyncio
async def test_nine_events_in_last_hour_allows(event_store, clock) -> None:
    now = clock()
    await _seed(event_store, "u1", "x", [now - 3600 + i * 60 for i in range(9)])
    limiter = RateLimiter(event_store, clock=clock)

    decision = await limiter.check("u1", DAILY)

    assert decision.allowed is True
    assert decision.remaining == 1
    assert decision.current_count == 9
    assert decision.retry_after_seconds == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("count", [0, 1, 5, 9, 10, 11, 25])
async def test_decision_invariants_hold_for_any_count(event_store, clock, count: int) -> None:
    now = clock()
    await _seed(event_store, "u1", "x", [now - i for i in range(count)])
    limiter = RateLimiter(event_store, clock=clock)

    decision = await limiter.check("u1", DAILY)

    assert decision.current_count == count
    assert decision.allowed == (count < DAILY.max_events)
    assert decision.remaining == max(0, DAILY.max_events - count)


@pytest.mark.asyncio
async def test_reset_at_is_within_window(event_store, clock) -> None:
    limiter = RateLimiter(event_store, clock=clock)

    decision = await limiter.check("u1", DAILY)

    assert decision.checked_at <= decision.reset_at <= decision.checked_at + DAILY.window_seconds
    assert decision.reset_at == clock() + DAILY.window_seconds


@pytest.mark.asyncio
async def test_window_slides_with_now(event_store, clock) -> None:
    policy = WindowPolicy(max_events=2, window_seconds=60, operation="x")
    now = clock()
    await _seed(event_store, "u1", "x", [now - 60, now - 30])
    limiter = RateLimiter(event_store, clock=clock)

    # Lower bound is inclusive: an event exactly window_seconds old still counts.
    assert (await limiter.check("u1", policy)).current_count == 2

    clock.advance(1)
    decision = await limiter.check("u1", policy)
    assert decision.current_count == 1
    assert decision.allowed is True

    clock.advance(30)
    assert (await limiter.check("u1", policy)).current_count == 0


@pytest.mark.asyncio
async def test_operations_and_identities_are_isolated(event_store, clock) -> None:
    policy_a = WindowPolicy(max_events=1, window_seconds=60, operation="a")
    policy_b = WindowPolicy(max_events=1, window_seconds=60, operation="b")
    await _seed(event_store, "u1", "a", [clock()])
    limiter = RateLimiter(event_store, clock=clock)

    assert (await limiter.check("u1", policy_a)).allowed is False
    assert (await limiter.check("u1", policy_b)).allowed is True
    assert (await limiter.check("u2", policy_a)).allowed is True


@pytest.mark.asyncio
async def test_timeout_fails_open_and_logs(clock, caplog: pytest.LogCaptureFixture) -> None:
    limiter = RateLimiter(HangingEventStore(), timeout_seconds=0.01, clock=clock)

    with caplog.at_level(logging.WARNING):
        decision = await limiter.check("u1", DAILY)

    assert decision.allowed is True
    assert decision.remaining == DAILY.max_events
    assert decision.current_count == 0
    assert decision.degraded is True
    assert "timed out" in (decision.error or "")
    assert any(r.getMessage() == "rate_limit.store_error" for r in caplog.records)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "exc",
    [
        StoreUnavailableError(code="store_unavailable", message="connection refused"),
        MalformedStoredValueError(code="malformed_count", message="bad count"),
        RuntimeError("driver bug"),
    ],
)
async def test_store_errors_fail_open(clock, exc: Exception) -> None:
    limiter = RateLimiter(FailingEventStore(exc), clock=clock)

    decision = await limiter.check("u1", DAILY)

    assert decision.allowed is True
    assert decision.remaining == DAILY.max_events
    assert decision.degraded is True


@pytest.mark.asyncio
async def test_fail_closed_policy_denies_on_store_error(clock) -> None:
    store = FailingEventStore(StoreUnavailableError(code="store_unavailable", message="down"))
    limiter = RateLimiter(store, failure_policy=FailurePolicy.FAIL_CLOSED, clock=clock)

    decision = await limiter.check("u1", DAILY)

    assert decision.allowed is False
    assert decision.remaining == 0
    assert decision.current_count == DAILY.max_events
    assert decision.degraded is True


@pytest.mark.asyncio
async def test_empty_identity_rejected(event_store) -> None:
    limiter = RateLimiter(event_store)

    with pytest.raises(ValueError):
        await limiter.check("", DAILY)


@pytest.mark.asyncio
async def test_soft_limit_concurrent_checks_can_overshoot(event_store, clock) -> None:
    """Soft limit: check-then-record is not atomic.

    Two concurrent requests that both see max_events - 1 are both allowed,
    and the identity ends one event over the limit.
    """
    now = clock()
    await _seed(event_store, "u1", "x", [now - i for i in range(9)])
    limiter = RateLimiter(event_store, clock=clock)

    first, second = await asyncio.gather(limiter.check("u1", DAILY), limiter.check("u1", DAILY))
    assert first.allowed is True
    assert second.allowed is True

    await _seed(event_store, "u1", "x", [now, now])
    after = await limiter.check("u1", DAILY)
    assert after.current_count == 11
    assert after.allowed is False


@pytest.mark.asyncio
async def test_usage_summary_reports_each_operation(event_store, clock) -> None:
    policy_a = WindowPolicy(max_events=3, window_seconds=60, operation="a")
    policy_b = WindowPolicy(max_events=5, window_seconds=60, operation="b")
    await _seed(event_store, "u1", "a", [clock(), clock()])
    limiter = RateLimiter(event_store, clock=clock)

    summary = await limiter.usage_summary("u1", [policy_a, policy_b])

    assert summary["a"].count == 2
    assert summary["a"].limit == 3
    assert summary["a"].remaining == 1
    assert summary["b"].count == 0
    assert summary["b"].remaining == 5
