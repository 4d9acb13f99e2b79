from typing import Annotated

from fastapi import APIRouter, Depends

from quotaguard.core.errors import ValidationAppError
from quotaguard.core.identity import resolve_identity
from quotaguard.core.policies import DEFAULT_POLICIES, policies_by_operation
from quotaguard.core.rate_limit import get_rate_limiter
from quotaguard.schemas.quota import QuotaDecisionResponse, UsageEntry, UsageSummaryResponse
from quotaguard.services.rate_limiter import RateLimiter

router = APIRouter(tags=["Quota"])

_policies = policies_by_operation(DEFAULT_POLICIES)


@router.get("/quota/usage", response_model=UsageSummaryResponse)
async def usage_summary(
    identity: Annotated[str, Depends(resolve_identity)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> UsageSummaryResponse:
    """Report the caller's usage for every configured operation.

    Checking does not consume quota.
    """
    summary = await limiter.usage_summary(identity, DEFAULT_POLICIES)
    return UsageSummaryResponse(
        identity_type=identity.split(":", 1)[0],
        usage={op: UsageEntry.from_snapshot(snapshot) for op, snapshot in summary.items()},
    )


@router.get("/quota/{operation}", response_model=QuotaDecisionResponse)
async def quota_status(
    operation: str,
    identity: Annotated[str, Depends(resolve_identity)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> QuotaDecisionResponse:
    """Return the current quota decision for one operation.

    Raises:
        ValidationAppError: 400 if the operation has no configured policy.
    """
    policy = _policies.get(operation)
    if policy is None:
        raise ValidationAppError(
            code="unknown_operation",
            message=f"No quota policy configured for operation '{operation}'",
            details={"operation": operation, "hint": f"Known: {', '.join(sorted(_policies))}"},
        )

    decision = await limiter.check(identity, policy)
    return QuotaDecisionResponse.from_decision(operation, decision)
