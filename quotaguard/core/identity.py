"""Identity resolution for quota tracking.

The identity is an opaque string the quota is counted against. This module
does not verify credentials (that is the handler's auth layer); it only
derives a stable key from what the request carries:

- ``X-API-Key`` present: ``api_key:<sha256 prefix>`` (the raw key is never
  stored in the event table).
- otherwise: ``ip:<client host>``.
"""

from __future__ import annotations

import hashlib
from typing import Annotated

from fastapi import Header, Request


def build_identity(request: Request, x_api_key: str | None) -> str:
    """Build the quota identity for the current request.

    Args:
        request: FastAPI request.
        x_api_key: API key value from the X-API-Key header.

    Returns:
        str: Namespaced identity string.
    """

    if x_api_key:
        digest = hashlib.sha256(x_api_key.encode()).hexdigest()[:32]
        return f"api_key:{digest}"

    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"


async def resolve_identity(
    request: Request,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> str:
    """FastAPI dependency returning the caller's quota identity."""
    return build_identity(request, x_api_key)
