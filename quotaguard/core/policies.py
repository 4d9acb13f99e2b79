"""Window policies and failure policies.

Policies are immutable values constructed once and passed explicitly into
every check. Nothing in the services reads them from module globals.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from quotaguard.core.errors import InvalidPolicyError


def _is_count(value: object) -> bool:
    # bool is an int subclass; True must not pass as a limit of 1
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


class FailurePolicy(str, Enum):
    """How the rate limiter answers when the event store cannot be queried.

    FAIL_OPEN favours availability: the call is allowed and the failure is
    logged. FAIL_CLOSED favours strict enforcement: the call is denied.
    """

    FAIL_OPEN = "open"
    FAIL_CLOSED = "closed"


@dataclass(frozen=True)
class WindowPolicy:
    """Sliding-window quota for one operation.

    Attributes:
        max_events: Maximum events allowed inside the window (>= 1).
        window_seconds: Window length in seconds (>= 1).
        operation: Name of the quota-consuming operation.

    Raises:
        InvalidPolicyError: If any bound is invalid.
    """

    max_events: int
    window_seconds: int
    operation: str

    def __post_init__(self) -> None:
        if not _is_count(self.max_events):
            raise InvalidPolicyError(
                code="invalid_policy",
                message="max_events must be an integer >= 1",
                details={"operation": self.operation, "hint": f"got {self.max_events!r}"},
            )
        if not _is_count(self.window_seconds):
            raise InvalidPolicyError(
                code="invalid_policy",
                message="window_seconds must be an integer >= 1",
                details={"operation": self.operation, "hint": f"got {self.window_seconds!r}"},
            )
        if not self.operation:
            raise InvalidPolicyError(
                code="invalid_policy",
                message="operation must be a non-empty string",
            )


FREE_DIAGNOSIS = WindowPolicy(max_events=10, window_seconds=86400, operation="free_diagnosis")
ADVANCED_DIAGNOSIS = WindowPolicy(max_events=20, window_seconds=86400, operation="advanced_diagnosis")
# Real-time guidance frames need a high hourly limit.
GUIDED_FIX = WindowPolicy(max_events=100, window_seconds=3600, operation="guided_fix")
REPAIR_PLAN = WindowPolicy(max_events=20, window_seconds=86400, operation="repair_plan")
LOCAL_PROS = WindowPolicy(max_events=500, window_seconds=86400, operation="local_pros")

DEFAULT_POLICIES: tuple[WindowPolicy, ...] = (
    FREE_DIAGNOSIS,
    ADVANCED_DIAGNOSIS,
    GUIDED_FIX,
    REPAIR_PLAN,
    LOCAL_PROS,
)


def policies_by_operation(
    policies: tuple[WindowPolicy, ...] = DEFAULT_POLICIES,
) -> dict[str, WindowPolicy]:
    """Index policies by operation name.

    Raises:
        InvalidPolicyError: If two policies share an operation name.
    """

    indexed: dict[str, WindowPolicy] = {}
    for policy in policies:
        if policy.operation in indexed:
            raise InvalidPolicyError(
                code="duplicate_policy",
                message=f"Duplicate policy for operation '{policy.operation}'",
                details={"operation": policy.operation},
            )
        indexed[policy.operation] = policy
    return indexed
