"""Shared fixtures for sync queue tests: in-memory store, fake clocks, spy appliers."""

from __future__ import annotations

import dataclasses
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator
from unittest.mock import AsyncMock

import pytest

from src.sync.base import NewOperation, OperationKind, SyncOperation, SyncStatus
from src.sync.engine import SyncEngine
from src.sync.registry import ApplierRegistry
from src.sync.store import OperationStore

OWNER_ID = 1
OTHER_OWNER_ID = 2
T0 = datetime(2026, 3, 2, 8, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeTransaction:
    """Unit-of-work handle: staged writes land only if the block exits cleanly."""

    def __init__(self, owner_id: int) -> None:
        self.owner_id = owner_id
        self.staged: list[tuple[int, datetime]] = []
        self.committed = False


class InMemoryOperationStore(OperationStore):
    """Dict-backed OperationStore mirroring the PostgreSQL semantics."""

    def __init__(self) -> None:
        self.operations: dict[int, SyncOperation] = {}
        self.transactions: list[FakeTransaction] = []
        self._next_id = 1

    # -- helpers for tests --

    def get(self, operation_id: int) -> SyncOperation:
        return dataclasses.replace(self.operations[operation_id])

    def put(self, **fields: Any) -> SyncOperation:
        """Insert an operation in an arbitrary state."""
        fields.setdefault("owner_id", OWNER_ID)
        fields.setdefault("resource_type", "trainings")
        fields.setdefault("operation_kind", "INSERT")
        fields.setdefault("payload", {"nom": "Seeded"})
        fields.setdefault("created_at", T0)
        fields["operation_kind"] = OperationKind.parse(fields["operation_kind"])
        op = SyncOperation(id=self._next_id, **fields)
        self.operations[op.id] = op
        self._next_id += 1
        return dataclasses.replace(op)

    # -- OperationStore --

    async def insert_many(
        self, owner_id: int, items: list[NewOperation], created_at: datetime
    ) -> list[SyncOperation]:
        created = []
        for item in items:
            created.append(
                self.put(
                    owner_id=owner_id,
                    resource_type=item.resource_type,
                    operation_kind=item.operation_kind,
                    payload=dict(item.payload),
                    created_at=created_at,
                )
            )
        return created

    async def list_pending(self, owner_id: int, limit: int) -> list[SyncOperation]:
        return self._select(owner_id, SyncStatus.pending)[:limit]

    @asynccontextmanager
    async def unit_of_work(self, owner_id: int) -> AsyncIterator[FakeTransaction]:
        txn = FakeTransaction(owner_id)
        self.transactions.append(txn)
        yield txn
        for operation_id, attempted_at in txn.staged:
            op = self.operations[operation_id]
            op.status = SyncStatus.synced
            op.last_attempt_at = attempted_at
        txn.committed = True

    async def mark_synced(
        self, conn: FakeTransaction, owner_id: int, operation_id: int, attempted_at: datetime
    ) -> None:
        op = self.operations[operation_id]
        if op.owner_id != owner_id or op.status is not SyncStatus.pending:
            raise RuntimeError(f"Sync operation {operation_id} is no longer pending")
        conn.staged.append((operation_id, attempted_at))

    async def record_failure(
        self, owner_id: int, operation_id: int, status: SyncStatus, attempted_at: datetime
    ) -> None:
        op = self.operations.get(operation_id)
        if op is None or op.owner_id != owner_id or op.status is not SyncStatus.pending:
            return
        op.status = status
        op.retry_count += 1
        op.last_attempt_at = attempted_at

    async def count_by_status(self, owner_id: int) -> dict[SyncStatus, int]:
        counts: dict[SyncStatus, int] = {}
        for op in self.operations.values():
            if op.owner_id == owner_id:
                counts[op.status] = counts.get(op.status, 0) + 1
        return counts

    async def last_synced_at(self, owner_id: int) -> datetime | None:
        times = [
            op.last_attempt_at
            for op in self.operations.values()
            if op.owner_id == owner_id
            and op.status is SyncStatus.synced
            and op.last_attempt_at is not None
        ]
        return max(times) if times else None

    async def list_by_status(
        self, owner_id: int, status: SyncStatus, limit: int
    ) -> list[SyncOperation]:
        return self._select(owner_id, status)[:limit]

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
        op = self.operations.get(operation_id)
        if op is None or op.owner_id != owner_id or op.status is not from_status:
            return None
        op.status = to_status
        if payload is not None:
            op.payload = dict(payload)
        if reset_retries:
            op.retry_count = 0
        return dataclasses.replace(op)

    async def delete_synced_before(self, owner_id: int, cutoff: datetime) -> int:
        doomed = [
            op.id
            for op in self.operations.values()
            if op.owner_id == owner_id
            and op.status is SyncStatus.synced
            and op.last_attempt_at is not None
            and op.last_attempt_at < cutoff
        ]
        for operation_id in doomed:
            del self.operations[operation_id]
        return len(doomed)

    def _select(self, owner_id: int, status: SyncStatus) -> list[SyncOperation]:
        matching = [
            op
            for op in self.operations.values()
            if op.owner_id == owner_id and op.status is status
        ]
        matching.sort(key=lambda op: (op.created_at, op.id))
        return [dataclasses.replace(op) for op in matching]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> InMemoryOperationStore:
    return InMemoryOperationStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def appliers() -> dict[str, AsyncMock]:
    """Spy appliers that succeed unless a test gives them a side effect."""
    return {
        "training_insert": AsyncMock(return_value=None),
        "training_update": AsyncMock(return_value=None),
        "training_delete": AsyncMock(return_value=None),
        "set_insert": AsyncMock(return_value=None),
        "nutrition_insert": AsyncMock(return_value=None),
    }


@pytest.fixture
def registry(appliers: dict[str, AsyncMock]) -> ApplierRegistry:
    r = ApplierRegistry()
    r.register("trainings", "INSERT", appliers["training_insert"])
    r.register("trainings", "UPDATE", appliers["training_update"])
    r.register("trainings", "DELETE", appliers["training_delete"])
    r.register("sets", "INSERT", appliers["set_insert"])
    r.register("nutrition_entries", "INSERT", appliers["nutrition_insert"])
    return r


@pytest.fixture
def engine(
    store: InMemoryOperationStore, registry: ApplierRegistry, clock: FakeClock
) -> SyncEngine:
    return SyncEngine(store, registry, clock=clock)


def training_insert(nom: str = "Leg Day") -> dict[str, Any]:
    return {"resource_type": "trainings", "operation_kind": "INSERT", "payload": {"nom": nom}}
