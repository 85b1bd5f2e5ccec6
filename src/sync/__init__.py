"""Offline sync queue for SportApp.

The mobile client records mutations while offline and uploads them as a
batch; the server replays them against PostgreSQL in submission order.

Modules:
    base      — SyncOperation, status / kind enums, result types
    errors    — Exception hierarchy (validation, not-found, conflict, applier)
    store     — OperationStore contract + PostgreSQL implementation
    registry  — (resource_type, operation_kind) → applier table
    appliers  — Owner-scoped PostgreSQL appliers per resource collection
    engine    — State machine: enqueue, replay, status, resolve, cleanup
"""

from src.sync.base import (
    OperationKind,
    ResolutionMode,
    SyncOperation,
    SyncStatus,
)
from src.sync.engine import SyncEngine
from src.sync.registry import ApplierRegistry
from src.sync.store import OperationStore, PostgresOperationStore

__all__ = [
    "ApplierRegistry",
    "OperationKind",
    "OperationStore",
    "PostgresOperationStore",
    "ResolutionMode",
    "SyncEngine",
    "SyncOperation",
    "SyncStatus",
]
