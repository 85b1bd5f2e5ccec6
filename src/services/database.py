"""PostgreSQL access with RLS context.

A :class:`Database` wraps one asyncpg connection pool.  It is constructed
and connected by the application lifespan and handed to whatever needs it;
nothing in the code base reaches for a module-level pool.

Every unit of work runs inside a transaction on a single pooled connection
where ``app.current_user_id`` is set via ``SET LOCAL``, so Postgres
Row-Level Security policies see the correct identity.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator

import asyncpg

from src.config import Settings

logger = logging.getLogger("sportapp.db")


async def _init_connection(conn: asyncpg.Connection) -> None:
    """Decode json/jsonb columns to Python objects on every pooled connection."""
    for typename in ("json", "jsonb"):
        await conn.set_type_codec(
            typename,
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )


class Database:
    """Owner of the asyncpg pool.

    Usage::

        db = Database.from_settings(settings)
        await db.connect()
        async with db.transaction(user_id=42) as conn:
            rows = await conn.fetch("SELECT * FROM trainings WHERE user_id = $1", 42)
        await db.close()
    """

    def __init__(
        self,
        dsn: str,
        min_size: int = 2,
        max_size: int = 20,
        command_timeout: float = 30.0,
    ) -> None:
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._command_timeout = command_timeout
        self._pool: asyncpg.Pool | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
        )

    async def connect(self) -> asyncpg.Pool:
        """Create the connection pool. Call once at app startup."""
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                self._dsn,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=self._command_timeout,
                init=_init_connection,
            )
            logger.info(
                "Database pool initialized (min=%d, max=%d)",
                self._min_size,
                self._max_size,
            )
        return self._pool

    async def close(self) -> None:
        """Drain the pool. Call at app shutdown."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database pool closed")

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database pool not initialized — call connect() first")
        return self._pool

    @asynccontextmanager
    async def transaction(
        self, user_id: int | None = None
    ) -> AsyncGenerator[asyncpg.Connection, None]:
        """Acquire a connection and open a transaction with RLS context set.

        The ``SET LOCAL`` is scoped to the transaction so it disappears when
        the connection goes back to the pool.  An exception raised inside the
        block rolls back everything done on ``conn``.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                if user_id is not None:
                    await conn.execute(
                        "SELECT set_config('app.current_user_id', $1, true)",
                        str(user_id),
                    )
                yield conn

    async def execute(self, query: str, *args: Any, user_id: int | None = None) -> str:
        """Execute a single statement and return its status tag."""
        async with self.transaction(user_id=user_id) as conn:
            return await conn.execute(query, *args)

    async def fetch(
        self, query: str, *args: Any, user_id: int | None = None
    ) -> list[asyncpg.Record]:
        async with self.transaction(user_id=user_id) as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(
        self, query: str, *args: Any, user_id: int | None = None
    ) -> asyncpg.Record | None:
        async with self.transaction(user_id=user_id) as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any, user_id: int | None = None) -> Any:
        async with self.transaction(user_id=user_id) as conn:
            return await conn.fetchval(query, *args)

    async def ping(self) -> bool:
        """Return True if a trivial query round-trips."""
        async with self.pool.acquire() as conn:
            return await conn.fetchval("SELECT 1") == 1


def affected_rows(status: str) -> int:
    """Parse the row count out of an asyncpg status tag (``"UPDATE 3"`` → 3)."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


# The schema uses TIMESTAMP (without time zone) columns holding UTC wall time.
# asyncpg refuses aware datetimes for those, so values cross the boundary naive.

def to_db_timestamp(value: datetime | None) -> datetime | None:
    """Aware datetime → naive UTC for a ``TIMESTAMP`` column.  Naive values pass through."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_db_timestamp(value: datetime | None) -> datetime | None:
    """Naive UTC read from a ``TIMESTAMP`` column → aware UTC datetime."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
