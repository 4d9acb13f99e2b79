"""Best-effort usage event recording.

Recording is a side effect of a successful operation, not part of its
result: failures are logged and reported through ``StoreOutcome`` but never
raised and never retried. A lost event only makes the next quota check
slightly more permissive.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from quotaguard.adapters.stores.base import AbstractEventStore, UsageEvent
from quotaguard.core.logging import hash_identity
from quotaguard.core.results import StoreOutcome

logger = logging.getLogger(__name__)


class UsageRecorder:
    """Appends ``UsageEvent`` rows to an event store."""

    def __init__(
        self,
        store: AbstractEventStore,
        *,
        timeout_seconds: float | None = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self._timeout = timeout_seconds
        self._clock = clock
        # Strong references so scheduled writes are not garbage collected mid-flight
        self._pending: set[asyncio.Task[StoreOutcome]] = set()

    async def record(
        self,
        identity: str,
        operation: str,
        metadata: dict[str, Any] | None = None,
    ) -> StoreOutcome:
        """Append one usage event stamped with the current time.

        Args:
            identity: Caller key the event is attributed to.
            operation: Operation name (matches ``WindowPolicy.operation``).
            metadata: Optional opaque context stored with the event.

        Returns:
            StoreOutcome describing whether the write landed.
        """
        event = UsageEvent(
            identity=identity,
            operation=operation,
            occurred_at=self._clock(),
            metadata=dict(metadata or {}),
        )

        try:
            await asyncio.wait_for(self.store.insert(event), timeout=self._timeout)
        except Exception as exc:
            error = (
                f"event store timed out after {self._timeout}s"
                if isinstance(exc, asyncio.TimeoutError)
                else f"{type(exc).__name__}: {exc}"
            )
            logger.warning(
                "usage.record_failed",
                extra={
                    "identity_hash": hash_identity(identity),
                    "operation": operation,
                    "error_type": type(exc).__name__,
                    "error_msg": error,
                },
            )
            return StoreOutcome.failure(error)

        logger.info(
            "usage.recorded",
            extra={
                "identity_hash": hash_identity(identity),
                "operation": operation,
            },
        )
        return StoreOutcome.success()

    def record_nowait(
        self,
        identity: str,
        operation: str,
        metadata: dict[str, Any] | None = None,
    ) -> asyncio.Task[StoreOutcome]:
        """Schedule ``record`` without waiting for the store write.

        Must be called from a running event loop. The event is lost if the
        write fails; the failure is still logged.
        """
        task = asyncio.get_running_loop().create_task(
            self.record(identity, operation, metadata)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @property
    def pending(self) -> int:
        """Number of scheduled writes that have not finished yet."""
        return len(self._pending)

    async def drain(self) -> list[StoreOutcome]:
        """Wait for every scheduled write (e.g. at shutdown)."""
        if not self._pending:
            return []
        return list(await asyncio.gather(*self._pending))
