"""Durable operation log for the offline sync queue.

``OperationStore`` is the contract the engine depends on.
``PostgresOperationStore`` implements it over the ``offline_data_queue``
table::

    offline_data_queue (
        id           BIGSERIAL PRIMARY KEY,
        user_id      INTEGER REFERENCES users(id) ON DELETE CASCADE,
        table_name   VARCHAR(100) NOT NULL,
        operation    VARCHAR(20)  NOT NULL,            -- INSERT | UPDATE | DELETE
        data         JSONB        NOT NULL,
        sync_status  VARCHAR(20)  DEFAULT 'pending',   -- pending | synced | failed | conflict
        retry_count  INTEGER      DEFAULT 0,
        last_attempt TIMESTAMP,                        -- UTC wall time
        created_at   TIMESTAMP    DEFAULT CURRENT_TIMESTAMP
    )

Every query carries a ``user_id`` predicate; a store call can never touch
another owner's queue.

The timestamp columns are ``TIMESTAMP`` without time zone.  Datetimes are
written as naive UTC and read back as aware UTC (see
``src.services.database.to_db_timestamp``).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any

import asyncpg

from src.services.database import (
    Database,
    affected_rows,
    from_db_timestamp,
    to_db_timestamp,
)
from src.sync.base import NewOperation, OperationKind, SyncOperation, SyncStatus

logger = logging.getLogger("sportapp.sync.store")


class OperationStore(ABC):
    """Persistence contract for sync operations."""

    @abstractmethod
    async def insert_many(
        self, owner_id: int, items: list[NewOperation], created_at: datetime
    ) -> list[SyncOperation]:
        """Store items as ``pending`` operations, in order, and return them."""

    @abstractmethod
    async def list_pending(self, owner_id: int, limit: int) -> list[SyncOperation]:
        """Oldest-first pending operations for one owner."""

    @abstractmethod
    def unit_of_work(self, owner_id: int) -> AbstractAsyncContextManager[Any]:
        """Open a transaction; yields the handle passed to appliers and ``mark_synced``.

        An exception raised inside the block rolls back the whole unit.
        """

    @abstractmethod
    async def mark_synced(
        self, conn: Any, owner_id: int, operation_id: int, attempted_at: datetime
    ) -> None:
        """Inside a unit of work: ``pending`` → ``synced``."""

    @abstractmethod
    async def record_failure(
        self, owner_id: int, operation_id: int, status: SyncStatus, attempted_at: datetime
    ) -> None:
        """``pending`` → ``failed`` | ``conflict`` and bump ``retry_count``."""

    @abstractmethod
    async def count_by_status(self, owner_id: int) -> dict[SyncStatus, int]: ...

    @abstractmethod
    async def last_synced_at(self, owner_id: int) -> datetime | None: ...

    @abstractmethod
    async def list_by_status(
        self, owner_id: int, status: SyncStatus, limit: int
    ) -> list[SyncOperation]: ...

    @abstractmethod
    async def transition(
        self,
        owner_id: int,
        operation_id: int,
        from_status: SyncStatus,
        to_status: SyncStatus,
        *,
        payload: dict[str, Any] | None = None,
        reset_retries: bool = False,
    ) -> SyncOperation | None:
        """Conditionally move one operation between states.

        Only applies when the operation exists, belongs to ``owner_id`` and is
        currently ``from_status``.  ``payload`` (if given) replaces the stored
        payload.  Returns the updated operation, or None when nothing matched.
        """

    @abstractmethod
    async def delete_synced_before(self, owner_id: int, cutoff: datetime) -> int:
        """Delete ``synced`` operations whose last attempt is before ``cutoff``."""


def operation_from_record(record: asyncpg.Record | dict[str, Any]) -> SyncOperation:
    """Map an ``offline_data_queue`` row to a :class:`SyncOperation`."""
    kind = OperationKind.parse(record["operation"])
    if kind is None:
        raise ValueError(f"Unknown operation kind in queue row {record['id']}: {record['operation']!r}")
    return SyncOperation(
        id=record["id"],
        owner_id=record["user_id"],
        resource_type=record["table_name"],
        operation_kind=kind,
        payload=record["data"],
        status=SyncStatus(record["sync_status"]),
        retry_count=record["retry_count"],
        last_attempt_at=from_db_timestamp(record["last_attempt"]),
        created_at=from_db_timestamp(record["created_at"]),
    )


class PostgresOperationStore(OperationStore):
    """``OperationStore`` backed by asyncpg."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def insert_many(
        self, owner_id: int, items: list[NewOperation], created_at: datetime
    ) -> list[SyncOperation]:
        if not items:
            return []
        created: list[SyncOperation] = []
        async with self._db.transaction(user_id=owner_id) as conn:
            for item in items:
                row = await conn.fetchrow(
                    """
                    INSERT INTO offline_data_queue (
                        user_id, table_name, operation, data, sync_status, retry_count, created_at
                    ) VALUES ($1, $2, $3, $4, 'pending', 0, $5)
                    RETURNING *
                    """,
                    owner_id,
                    item.resource_type,
                    item.operation_kind.value,
                    item.payload,
                    to_db_timestamp(created_at),
                )
                created.append(operation_from_record(row))
        return created

    async def list_pending(self, owner_id: int, limit: int) -> list[SyncOperation]:
        rows = await self._db.fetch(
            """
            SELECT * FROM offline_data_queue
            WHERE user_id = $1 AND sync_status = 'pending'
            ORDER BY created_at ASC, id ASC
            LIMIT $2
            """,
            owner_id,
            limit,
            user_id=owner_id,
        )
        return [operation_from_record(r) for r in rows]

    def unit_of_work(self, owner_id: int) -> AbstractAsyncContextManager[asyncpg.Connection]:
        return self._db.transaction(user_id=owner_id)

    async def mark_synced(
        self,
        conn: asyncpg.Connection,
        owner_id: int,
        operation_id: int,
        attempted_at: datetime,
    ) -> None:
        status = await conn.execute(
            """
            UPDATE offline_data_queue
            SET sync_status = 'synced', last_attempt = $2
            WHERE id = $1 AND user_id = $3 AND sync_status = 'pending'
            """,
            operation_id,
            to_db_timestamp(attempted_at),
            owner_id,
        )
        if affected_rows(status) != 1:
            # Someone else moved it; abort the unit so the applier effect rolls back too.
            raise RuntimeError(f"Sync operation {operation_id} is no longer pending")

    async def record_failure(
        self, owner_id: int, operation_id: int, status: SyncStatus, attempted_at: datetime
    ) -> None:
        await self._db.execute(
            """
            UPDATE offline_data_queue
            SET sync_status = $3, retry_count = retry_count + 1, last_attempt = $4
            WHERE id = $1 AND user_id = $2 AND sync_status = 'pending'
            """,
            operation_id,
            owner_id,
            status.value,
            to_db_timestamp(attempted_at),
            user_id=owner_id,
        )

    async def count_by_status(self, owner_id: int) -> dict[SyncStatus, int]:
        rows = await self._db.fetch(
            """
            SELECT sync_status, COUNT(*) AS count
            FROM offline_data_queue
            WHERE user_id = $1
            GROUP BY sync_status
            """,
            owner_id,
            user_id=owner_id,
        )
        counts = {status: 0 for status in SyncStatus}
        for r in rows:
            try:
                counts[SyncStatus(r["sync_status"])] = int(r["count"])
            except ValueError:
                logger.warning("Ignoring unknown sync_status %r", r["sync_status"])
        return counts

    async def last_synced_at(self, owner_id: int) -> datetime | None:
        latest = await self._db.fetchval(
            """
            SELECT MAX(last_attempt) FROM offline_data_queue
            WHERE user_id = $1 AND sync_status = 'synced'
            """,
            owner_id,
            user_id=owner_id,
        )
        return from_db_timestamp(latest)

    async def list_by_status(
        self, owner_id: int, status: SyncStatus, limit: int
    ) -> list[SyncOperation]:
        rows = await self._db.fetch(
            """
            SELECT * FROM offline_data_queue
            WHERE user_id = $1 AND sync_status = $2
            ORDER BY created_at ASC, id ASC
            LIMIT $3
            """,
            owner_id,
            status.value,
            limit,
            user_id=owner_id,
        )
        return [operation_from_record(r) for r in rows]

    async def transition(
        self,
        owner_id: int,
        operation_id: int,
        from_status: SyncStatus,
        to_status: SyncStatus,
        *,
        payload: dict[str, Any] | None = None,
        reset_retries: bool = False,
    ) -> SyncOperation | None:
        set_clauses = ["sync_status = $4"]
        params: list[Any] = [operation_id, owner_id, from_status.value, to_status.value]
        if payload is not None:
            params.append(payload)
            set_clauses.append(f"data = ${len(params)}")
        if reset_retries:
            set_clauses.append("retry_count = 0")

        row = await self._db.fetchrow(
            f"""
            UPDATE offline_data_queue SET {', '.join(set_clauses)}
            WHERE id = $1 AND user_id = $2 AND sync_status = $3
            RETURNING *
            """,
            *params,
            user_id=owner_id,
        )
        return operation_from_record(row) if row else None

    async def delete_synced_before(self, owner_id: int, cutoff: datetime) -> int:
        status = await self._db.execute(
            """
            DELETE FROM offline_data_queue
            WHERE user_id = $1 AND sync_status = 'synced' AND last_attempt < $2
            """,
            owner_id,
            to_db_timestamp(cutoff),
            user_id=owner_id,
        )
        return affected_rows(status)
