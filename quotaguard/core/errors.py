"""Application-level exception types.

This module defines the error taxonomy used across stores, services and the
HTTP layer. Two families exist:

- Configuration errors (``InvalidPolicyError``) fail loudly at construction.
- Store errors (``StoreUnavailableError``, ``MalformedStoredValueError``) are
  raised by adapters and absorbed by services into fail-open / miss /
  best-effort contracts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from quotaguard.core.results import QuotaDecision


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    operation: str
    limit: int
    remaining: int
    reset_at: float
    retry_after: int
    backend: str
    status_code: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class InvalidPolicyError(ValidationAppError):
    """Raised when a window policy is constructed with invalid bounds."""


class StoreError(AppError):
    """Base class for failures reported by a backing store adapter."""


class StoreUnavailableError(StoreError):
    """Raised on connection failures, timeouts or 5xx replies from a store."""


class MalformedStoredValueError(StoreError):
    """Raised when a stored row or store response cannot be interpreted."""


class QuotaExceededError(AppError):
    """Raised by the HTTP layer / read-through service when a quota is spent."""

    def __init__(self, decision: "QuotaDecision", operation: str) -> None:
        super().__init__(
            code="quota_exceeded",
            message="Rate limit exceeded. Try again later.",
            details={
                "operation": operation,
                "limit": decision.limit,
                "remaining": decision.remaining,
                "reset_at": decision.reset_at,
                "retry_after": decision.retry_after_seconds,
            },
        )
        self.decision = decision
        self.operation = operation
