"""Unit tests for the best-effort UsageRecorder."""

import asyncio
import logging

import pytest

from quotaguard.adapters.stores.base import AbstractEventStore, UsageEvent
from quotaguard.core.errors import StoreUnavailableError
from quotaguard.services.usage_recorder import UsageRecorder


class BrokenEventStore(AbstractEventStore):
    async def insert(self, event: UsageEvent) -> None:
        raise StoreUnavailableError(code="store_unavailable", message="insert failed")

    async def count_since(self, identity: str, operation: str, since: float) -> int:
        return 0


class SlowEventStore(AbstractEventStore):
    async def insert(self, event: UsageEvent) -> None:
        await asyncio.sleep(10)

    async def count_since(self, identity: str, operation: str, since: float) -> int:
        return 0


@pytest.mark.asyncio
async def test_record_appends_event_stamped_with_now(event_store, clock) -> None:
    recorder = UsageRecorder(event_store, clock=clock)
    metadata = {"image_count": 2}

    outcome = await recorder.record("u1", "free_diagnosis", metadata)

    assert outcome.ok is True
    [event] = event_store.events()
    assert event.identity == "u1"
    assert event.operation == "free_diagnosis"
    assert event.occurred_at == clock()
    assert event.metadata == {"image_count": 2}

    # Caller mutations after the fact don't leak into the stored event
    metadata["image_count"] = 99
    assert event_store.events()[0].metadata == {"image_count": 2}


@pytest.mark.asyncio
async def test_record_defaults_metadata_to_empty(event_store) -> None:
    recorder = UsageRecorder(event_store)

    await recorder.record("u1", "x")

    assert event_store.events()[0].metadata == {}


@pytest.mark.asyncio
async def test_store_failure_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    recorder = UsageRecorder(BrokenEventStore())

    with caplog.at_level(logging.WARNING):
        outcome = await recorder.record("u1", "x")

    assert outcome.ok is False
    assert "insert failed" in (outcome.error or "")
    assert any(r.getMessage() == "usage.record_failed" for r in caplog.records)


@pytest.mark.asyncio
async def test_timeout_is_reported_as_failure() -> None:
    recorder = UsageRecorder(SlowEventStore(), timeout_seconds=0.01)

    outcome = await recorder.record("u1", "x")

    assert outcome.ok is False
    assert "timed out" in (outcome.error or "")


@pytest.mark.asyncio
async def test_record_nowait_runs_in_background(event_store) -> None:
    recorder = UsageRecorder(event_store)

    task = recorder.record_nowait("u1", "x", {"k": "v"})
    assert isinstance(task, asyncio.Task)

    outcomes = await recorder.drain()

    assert [o.ok for o in outcomes] == [True]
    assert len(event_store.events()) == 1
    assert recorder.pending == 0


@pytest.mark.asyncio
async def test_record_nowait_failure_never_raises() -> None:
    recorder = UsageRecorder(BrokenEventStore())

    task = recorder.record_nowait("u1", "x")
    outcome = await task

    assert outcome.ok is False


@pytest.mark.asyncio
async def test_drain_with_nothing_pending(event_store) -> None:
    recorder = UsageRecorder(event_store)

    assert await recorder.drain() == []
