"""Tests for the PostgreSQL operation store (mocked Database)."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.services.database import affected_rows, from_db_timestamp, to_db_timestamp
from src.sync.base import NewOperation, OperationKind, SyncStatus
from src.sync.store import PostgresOperationStore, operation_from_record
from src.sync.tests.conftest import OWNER_ID, T0

# What a TIMESTAMP (without time zone) column hands back for T0.
T0_NAIVE = T0.replace(tzinfo=None)


def _row(**overrides) -> dict:
    row = {
        "id": 5,
        "user_id": OWNER_ID,
        "table_name": "trainings",
        "operation": "insert",
        "data": {"nom": "Leg Day"},
        "sync_status": "conflict",
        "retry_count": 1,
        "last_attempt": T0_NAIVE,
        "created_at": T0_NAIVE,
    }
    row.update(overrides)
    return row


def _is_naive(value: datetime) -> bool:
    return isinstance(value, datetime) and value.tzinfo is None


@pytest.fixture
def db() -> MagicMock:
    db = MagicMock()
    db.execute = AsyncMock(return_value="UPDATE 1")
    db.fetch = AsyncMock(return_value=[])
    db.fetchrow = AsyncMock(return_value=None)
    db.fetchval = AsyncMock(return_value=None)
    return db


def test_affected_rows() -> None:
    assert affected_rows("DELETE 3") == 3
    assert affected_rows("UPDATE 0") == 0
    assert affected_rows("") == 0


class TestTimestampConversion:
    def test_aware_becomes_naive_utc(self) -> None:
        paris = timezone(timedelta(hours=2))
        value = datetime(2026, 3, 2, 10, 0, tzinfo=paris)
        assert to_db_timestamp(value) == T0_NAIVE
        assert _is_naive(to_db_timestamp(value))

    def test_naive_and_none_pass_through(self) -> None:
        assert to_db_timestamp(T0_NAIVE) is T0_NAIVE
        assert to_db_timestamp(None) is None

    def test_read_back_is_aware_utc(self) -> None:
        assert from_db_timestamp(T0_NAIVE) == T0
        assert from_db_timestamp(T0_NAIVE).tzinfo is timezone.utc
        assert from_db_timestamp(None) is None


class TestOperationFromRecord:
    def test_maps_columns(self) -> None:
        op = operation_from_record(_row())
        assert op.owner_id == OWNER_ID
        assert op.resource_type == "trainings"
        assert op.operation_kind is OperationKind.INSERT
        assert op.status is SyncStatus.conflict
        assert op.last_attempt_at == T0
        assert op.created_at.tzinfo is not None

    def test_never_attempted(self) -> None:
        assert operation_from_record(_row(last_attempt=None)).last_attempt_at is None

    def test_unknown_kind_raises(self) -> None:
        with pytest.raises(ValueError):
            operation_from_record(_row(operation="MERGE"))


class TestPostgresOperationStore:
    @pytest.mark.asyncio
    async def test_insert_binds_naive_created_at(self, db: MagicMock) -> None:
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value=_row(sync_status="pending", retry_count=0))

        @asynccontextmanager
        async def transaction(user_id=None):
            yield conn

        db.transaction = transaction
        item = NewOperation("trainings", OperationKind.INSERT, {"nom": "Leg Day"})

        created = await PostgresOperationStore(db).insert_many(OWNER_ID, [item], T0)

        args = conn.fetchrow.await_args.args[1:]
        assert args[0] == OWNER_ID
        assert args[2] == "INSERT"
        assert _is_naive(args[4])
        assert args[4] == T0_NAIVE
        assert created[0].created_at == T0

    @pytest.mark.asyncio
    async def test_transition_is_one_conditional_update(self, db: MagicMock) -> None:
        db.fetchrow.return_value = _row(sync_status="pending", retry_count=0, data={"nom": "x"})
        store = PostgresOperationStore(db)

        op = await store.transition(
            OWNER_ID, 5, SyncStatus.conflict, SyncStatus.pending,
            payload={"nom": "x"}, reset_retries=True,
        )

        sql, *args = db.fetchrow.await_args.args
        assert "WHERE id = $1 AND user_id = $2 AND sync_status = $3" in sql
        assert "data = $5" in sql
        assert "retry_count = 0" in sql
        assert args == [5, OWNER_ID, "conflict", "pending", {"nom": "x"}]
        assert db.fetchrow.await_args.kwargs == {"user_id": OWNER_ID}
        assert op.status is SyncStatus.pending

    @pytest.mark.asyncio
    async def test_transition_no_match_returns_none(self, db: MagicMock) -> None:
        store = PostgresOperationStore(db)
        assert await store.transition(OWNER_ID, 5, SyncStatus.failed, SyncStatus.pending) is None
        sql = db.fetchrow.await_args.args[0]
        assert "data =" not in sql
        assert "retry_count = 0" not in sql

    @pytest.mark.asyncio
    async def test_count_by_status_fills_missing(self, db: MagicMock) -> None:
        db.fetch.return_value = [{"sync_status": "pending", "count": 4}]
        counts = await PostgresOperationStore(db).count_by_status(OWNER_ID)
        assert counts == {
            SyncStatus.pending: 4,
            SyncStatus.synced: 0,
            SyncStatus.failed: 0,
            SyncStatus.conflict: 0,
        }

    @pytest.mark.asyncio
    async def test_last_synced_at_is_aware(self, db: MagicMock) -> None:
        db.fetchval.return_value = T0_NAIVE
        assert await PostgresOperationStore(db).last_synced_at(OWNER_ID) == T0

    @pytest.mark.asyncio
    async def test_record_failure_binds_naive_attempt(self, db: MagicMock) -> None:
        await PostgresOperationStore(db).record_failure(OWNER_ID, 5, SyncStatus.conflict, T0)
        sql, *args = db.execute.await_args.args
        assert "user_id = $2" in sql
        assert args[:3] == [5, OWNER_ID, "conflict"]
        assert _is_naive(args[3])

    @pytest.mark.asyncio
    async def test_delete_returns_row_count(self, db: MagicMock) -> None:
        db.execute.return_value = "DELETE 2"
        deleted = await PostgresOperationStore(db).delete_synced_before(OWNER_ID, T0)
        sql, *args = db.execute.await_args.args
        assert "sync_status = 'synced'" in sql
        assert args == [OWNER_ID, T0_NAIVE]
        assert _is_naive(args[1])
        assert deleted == 2


class TestMarkSynced:
    @pytest.mark.asyncio
    async def test_scoped_to_owner(self) -> None:
        conn = MagicMock()
        conn.execute = AsyncMock(return_value="UPDATE 1")

        await PostgresOperationStore(MagicMock()).mark_synced(conn, OWNER_ID, 5, T0)

        sql, *args = conn.execute.await_args.args
        assert "user_id = $3" in sql
        assert "sync_status = 'pending'" in sql
        assert args == [5, T0_NAIVE, OWNER_ID]
        assert _is_naive(args[1])

    @pytest.mark.asyncio
    async def test_requires_pending_row(self) -> None:
        conn = MagicMock()
        conn.execute = AsyncMock(return_value="UPDATE 0")
        with pytest.raises(RuntimeError):
            await PostgresOperationStore(MagicMock()).mark_synced(conn, OWNER_ID, 5, T0)
