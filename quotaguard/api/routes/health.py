from __future__ import annotations

from fastapi import APIRouter

from quotaguard.core.config import settings

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check.

    Does not touch the stores: a store outage degrades quota and cache
    behaviour but must not mark the service unhealthy.

    Returns:
        dict: ``status`` set to "ok" and the configured store backend.
    """

    return {"status": "ok", "store_backend": settings.store.backend}
