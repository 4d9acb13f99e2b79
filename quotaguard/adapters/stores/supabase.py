"""Supabase (PostgREST) implementation of the event and cache stores.

Talks to ``{supabase_url}/rest/v1/{table}`` with ``httpx.AsyncClient``:

- events: ``POST`` to insert; ``HEAD`` with ``Prefer: count=exact`` and
  ``gte`` filters to count, reading the total from ``Content-Range``.
- cache: ``POST`` with ``Prefer: resolution=merge-duplicates`` and
  ``on_conflict=cache_key`` to upsert; ``GET`` filtered on
  ``expires_at=gt.<now>`` to read; ``DELETE`` filtered on
  ``expires_at=lte.<now>`` to purge.

Timestamps are sent as ISO-8601 UTC strings (``timestamptz`` columns).
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import httpx

from quotaguard.adapters.stores.base import (
    AbstractCacheStore,
    AbstractEventStore,
    CacheEntry,
    UsageEvent,
)
from quotaguard.core.errors import MalformedStoredValueError, StoreUnavailableError


def _to_iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _from_iso(value: Any) -> float:
    if not isinstance(value, str):
        raise ValueError(f"expected ISO timestamp string, got {type(value).__name__}")
    # PostgREST emits "+00:00"; older Pythons reject a bare "Z"
    return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()


def _parse_content_range(header: str | None) -> int:
    """Extract the total from a ``Content-Range`` header like ``0-9/42`` or ``*/0``."""
    if not header or "/" not in header:
        raise MalformedStoredValueError(
            code="malformed_count",
            message="PostgREST response is missing a Content-Range total",
            details={"backend": "supabase"},
        )
    total = header.rsplit("/", 1)[1]
    if not total.isdigit():
        raise MalformedStoredValueError(
            code="malformed_count",
            message=f"PostgREST Content-Range total is not a number: {total!r}",
            details={"backend": "supabase"},
        )
    return int(total)


class _PostgrestTable:
    """Thin async wrapper around one PostgREST table endpoint."""

    def __init__(
        self,
        *,
        url: str,
        service_key: str,
        table: str,
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._table = table
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=f"{url.rstrip('/')}/rest/v1",
            headers={
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
            },
            timeout=timeout_seconds,
        )

    async def request(
        self,
        method: str,
        *,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        payload: Any = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method,
                f"/{self._table}",
                params=params,
                headers=headers,
                json=payload,
            )
        except httpx.HTTPError as exc:
            raise StoreUnavailableError(
                code="store_unavailable",
                message=f"supabase request failed: {exc}",
                details={"backend": "supabase"},
            ) from exc

        if response.status_code >= 400:
            raise StoreUnavailableError(
                code="store_unavailable",
                message=f"supabase returned HTTP {response.status_code}",
                details={"backend": "supabase", "status_code": response.status_code},
            )
        return response

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class SupabaseEventStore(AbstractEventStore):
    """Usage event log stored in a Supabase table.

    Column names follow the ``api_usage`` schema: ``user_id``, ``endpoint``,
    ``metadata`` (jsonb) and ``created_at`` (timestamptz).
    """

    def __init__(
        self,
        *,
        url: str,
        service_key: str,
        table: str = "api_usage",
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._table = _PostgrestTable(
            url=url,
            service_key=service_key,
            table=table,
            timeout_seconds=timeout_seconds,
            client=client,
        )

    async def insert(self, event: UsageEvent) -> None:
        await self._table.request(
            "POST",
            headers={"Prefer": "return=minimal"},
            payload={
                "user_id": event.identity,
                "endpoint": event.operation,
                "metadata": event.metadata,
                "created_at": _to_iso(event.occurred_at),
            },
        )

    async def count_since(self, identity: str, operation: str, since: float) -> int:
        response = await self._table.request(
            "HEAD",
            params={
                "select": "*",
                "user_id": f"eq.{identity}",
                "endpoint": f"eq.{operation}",
                "created_at": f"gte.{_to_iso(since)}",
            },
            headers={"Prefer": "count=exact"},
        )
        return _parse_content_range(response.headers.get("content-range"))

    async def close(self) -> None:
        await self._table.close()


class SupabaseCacheStore(AbstractCacheStore):
    """Response cache stored in a Supabase table with a unique ``cache_key``."""

    def __init__(
        self,
        *,
        url: str,
        service_key: str,
        table: str = "response_cache",
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._table = _PostgrestTable(
            url=url,
            service_key=service_key,
            table=table,
            timeout_seconds=timeout_seconds,
            client=client,
        )

    async def upsert(self, entry: CacheEntry) -> None:
        await self._table.request(
            "POST",
            params={"on_conflict": "cache_key"},
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
            payload={
                "cache_key": entry.key,
                "value": entry.value,
                "created_at": _to_iso(entry.created_at),
                "expires_at": _to_iso(entry.expires_at),
            },
        )

    async def get_live(self, key: str, now: float) -> CacheEntry | None:
        response = await self._table.request(
            "GET",
            params={
                "select": "cache_key,value,created_at,expires_at",
                "cache_key": f"eq.{key}",
                "expires_at": f"gt.{_to_iso(now)}",
                "limit": "1",
            },
        )
        try:
            rows = response.json()
        except json.JSONDecodeError as exc:
            raise MalformedStoredValueError(
                code="malformed_cache_row",
                message="supabase returned a non-JSON body",
                details={"backend": "supabase"},
            ) from exc

        if not isinstance(rows, list):
            raise MalformedStoredValueError(
                code="malformed_cache_row",
                message="supabase returned an unexpected body shape",
                details={"backend": "supabase"},
            )
        if not rows:
            return None

        row = rows[0]
        try:
            value = row["value"]
            if not isinstance(value, str):
                # jsonb columns come back already decoded
                value = json.dumps(value)
            return CacheEntry(
                key=row["cache_key"],
                value=value,
                created_at=_from_iso(row["created_at"]),
                expires_at=_from_iso(row["expires_at"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedStoredValueError(
                code="malformed_cache_row",
                message=f"cache row could not be interpreted: {exc}",
                details={"backend": "supabase"},
            ) from exc

    async def purge_expired(self, now: float) -> int:
        response = await self._table.request(
            "DELETE",
            params={"expires_at": f"lte.{_to_iso(now)}"},
            headers={"Prefer": "count=exact,return=minimal"},
        )
        return _parse_content_range(response.headers.get("content-range"))

    async def close(self) -> None:
        await self._table.close()
