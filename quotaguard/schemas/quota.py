"""Pydantic schemas for quota responses."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict

from pydantic import BaseModel, Field

from quotaguard.core.results import QuotaDecision, UsageSnapshot


class QuotaDecisionResponse(BaseModel):
    """Current quota state for one operation."""

    operation: str = Field(..., description="Operation the decision applies to.")
    allowed: bool = Field(..., description="Whether a call made now would be allowed.")
    limit: int = Field(..., description="Maximum events per window.")
    remaining: int = Field(..., description="Events left in the current window.")
    current_count: int = Field(..., description="Events counted in the sliding window.")
    reset_at: datetime = Field(
        ..., description="Upper bound on when the oldest counted event leaves the window (UTC)."
    )
    degraded: bool = Field(
        False,
        description="True when the event store could not be queried and the failure policy decided.",
    )

    @classmethod
    def from_decision(cls, operation: str, decision: QuotaDecision) -> "QuotaDecisionResponse":
        return cls(
            operation=operation,
            allowed=decision.allowed,
            limit=decision.limit,
            remaining=decision.remaining,
            current_count=decision.current_count,
            reset_at=datetime.fromtimestamp(decision.reset_at, tz=timezone.utc),
            degraded=decision.degraded,
        )


class UsageEntry(BaseModel):
    count: int
    limit: int
    remaining: int
    degraded: bool = False

    @classmethod
    def from_snapshot(cls, snapshot: UsageSnapshot) -> "UsageEntry":
        return cls(
            count=snapshot.count,
            limit=snapshot.limit,
            remaining=snapshot.remaining,
            degraded=snapshot.degraded,
        )


class UsageSummaryResponse(BaseModel):
    """Usage across every configured operation for the caller."""

    identity_type: str = Field(..., description="How the caller was identified: 'api_key' or 'ip'.")
    usage: Dict[str, UsageEntry] = Field(
        default_factory=dict,
        description="Per-operation usage keyed by operation name.",
    )
