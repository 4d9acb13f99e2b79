"""SQLite implementation of the event and cache stores (aiosqlite).

Each call opens its own short-lived connection, so stores carry no
connection state between calls and multiple processes can share one
database file (WAL mode). Tables and indexes are created on first use.
The cache upsert is a single ``INSERT ... ON CONFLICT(cache_key) DO UPDATE``
statement, which makes concurrent writers to the same key last-writer-wins
without torn rows.
"""

from __future__ import annotations

import json
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from quotaguard.adapters.stores.base import (
    AbstractCacheStore,
    AbstractEventStore,
    CacheEntry,
    UsageEvent,
)
from quotaguard.core.errors import MalformedStoredValueError, StoreUnavailableError

PathLike = str | Path

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_BUSY_TIMEOUT_SECONDS = 5.0


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(f"invalid table name: {name!r}")
    return name


class _SqliteBase:
    """Connection handling shared by both stores."""

    def __init__(self, db_path: PathLike, table: str) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._table = _check_identifier(table)
        self._schema_ready = False

    async def _initialize_table(self, db: aiosqlite.Connection) -> None:
        raise NotImplementedError

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Open a connection, creating the schema on first use.

        Raises:
            StoreUnavailableError: For any sqlite error raised while the
                connection is open.
        """
        try:
            async with aiosqlite.connect(str(self._db_path), timeout=_BUSY_TIMEOUT_SECONDS) as db:
                if not self._schema_ready:
                    # CREATE ... IF NOT EXISTS, so racing first calls are harmless
                    await self._initialize_table(db)
                    await db.commit()
                    self._schema_ready = True
                yield db
        except aiosqlite.Error as exc:
            raise StoreUnavailableError(
                code="store_unavailable",
                message=f"sqlite store failure: {exc}",
                details={"backend": "sqlite"},
            ) from exc


class SqliteEventStore(_SqliteBase, AbstractEventStore):
    """SQLite-backed usage event log.

    Args:
        db_path: Path to the SQLite database file.
        table: Event table name (default ``api_usage``).

    Example:
        store = SqliteEventStore("./quotaguard.db")
        await store.insert(UsageEvent("u1", "repair_plan", time.time()))
        count = await store.count_since("u1", "repair_plan", time.time() - 86400)
    """

    def __init__(self, db_path: PathLike, table: str = "api_usage") -> None:
        super().__init__(db_path, table)

    async def _initialize_table(self, db: aiosqlite.Connection) -> None:
        await db.execute("PRAGMA journal_mode=WAL")
        await db.execute(
            f"CREATE TABLE IF NOT EXISTS {self._table} ("
            "id INTEGER PRIMARY KEY AUTOINCREMENT,"
            "user_id TEXT NOT NULL,"
            "endpoint TEXT NOT NULL,"
            "metadata TEXT NOT NULL DEFAULT '{}',"
            "created_at REAL NOT NULL"
            ")"
        )
        await db.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{self._table}_rate_limit "
            f"ON {self._table}(user_id, endpoint, created_at)"
        )

    async def insert(self, event: UsageEvent) -> None:
        async with self._connection() as db:
            await db.execute(
                f"INSERT INTO {self._table} (user_id, endpoint, metadata, created_at) "
                "VALUES (?, ?, ?, ?)",
                (
                    event.identity,
                    event.operation,
                    json.dumps(event.metadata, default=str),
                    event.occurred_at,
                ),
            )
            await db.commit()

    async def count_since(self, identity: str, operation: str, since: float) -> int:
        async with self._connection() as db:
            async with db.execute(
                f"SELECT COUNT(*) FROM {self._table} "
                "WHERE user_id = ? AND endpoint = ? AND created_at >= ?",
                (identity, operation, since),
            ) as cursor:
                row = await cursor.fetchone()

        if row is None or not isinstance(row[0], int):
            raise MalformedStoredValueError(
                code="malformed_count",
                message="sqlite count query returned no integer",
                details={"backend": "sqlite"},
            )
        return row[0]


class SqliteCacheStore(_SqliteBase, AbstractCacheStore):
    """SQLite-backed response cache.

    Args:
        db_path: Path to the SQLite database file.
        table: Cache table name (default ``response_cache``).
    """

    def __init__(self, db_path: PathLike, table: str = "response_cache") -> None:
        super().__init__(db_path, table)

    async def _initialize_table(self, db: aiosqlite.Connection) -> None:
        await db.execute("PRAGMA journal_mode=WAL")
        await db.execute(
            f"CREATE TABLE IF NOT EXISTS {self._table} ("
            "cache_key TEXT PRIMARY KEY,"
            "value TEXT NOT NULL,"
            "created_at REAL NOT NULL,"
            "expires_at REAL NOT NULL"
            ")"
        )
        await db.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{self._table}_expires "
            f"ON {self._table}(expires_at)"
        )

    async def upsert(self, entry: CacheEntry) -> None:
        async with self._connection() as db:
            await db.execute(
                f"INSERT INTO {self._table} (cache_key, value, created_at, expires_at) "
                "VALUES (?, ?, ?, ?) "
                "ON CONFLICT(cache_key) DO UPDATE SET "
                "value = excluded.value, "
                "created_at = excluded.created_at, "
                "expires_at = excluded.expires_at",
                (entry.key, entry.value, entry.created_at, entry.expires_at),
            )
            await db.commit()

    async def get_live(self, key: str, now: float) -> CacheEntry | None:
        async with self._connection() as db:
            async with db.execute(
                f"SELECT cache_key, value, created_at, expires_at FROM {self._table} "
                "WHERE cache_key = ? AND expires_at > ?",
                (key, now),
            ) as cursor:
                row = await cursor.fetchone()

        if row is None:
            return None
        cache_key, value, created_at, expires_at = row
        if not isinstance(value, str):
            raise MalformedStoredValueError(
                code="malformed_cache_row",
                message="cached value is not text",
                details={"backend": "sqlite"},
            )
        return CacheEntry(
            key=cache_key,
            value=value,
            created_at=float(created_at),
            expires_at=float(expires_at),
        )

    async def purge_expired(self, now: float) -> int:
        async with self._connection() as db:
            cursor = await db.execute(
                f"DELETE FROM {self._table} WHERE expires_at <= ?",
                (now,),
            )
            purged = cursor.rowcount
            await db.commit()
        return purged
