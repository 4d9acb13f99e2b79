"""Pytest configuration and fixtures shared across all test modules.

Environment defaults are set before any module imports ``settings`` so the
suite never picks up a developer's .env file or a real store backend.
"""

import os

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("QUOTA_FAILURE_POLICY", "open")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from quotaguard.adapters.stores.in_memory import InMemoryCacheStore, InMemoryEventStore


class FakeClock:
    """Deterministic clock used to test windows and expiry."""

    def __init__(self, start: float = 1_704_067_200.0) -> None:  # 2024-01-01T00:00:00Z
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def event_store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
def cache_store() -> InMemoryCacheStore:
    return InMemoryCacheStore()
