"""Core types for the offline sync queue.

A :class:`SyncOperation` is one client-originated mutation.  Its ``status``
follows a small state machine::

    pending ──► synced
       │  ├───► failed   ──(retry)────────────► pending
       │  └───► conflict ──(use_local/merge)──► pending
       │              └────(use_server)───────► synced

``synced`` is terminal; such records are only removed by cleanup.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class SyncStatus(str, Enum):
    pending = "pending"
    synced = "synced"
    failed = "failed"
    conflict = "conflict"


class OperationKind(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    @classmethod
    def parse(cls, value: Any) -> "OperationKind | None":
        """Case-insensitive lookup; None for anything that is not a known kind."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


class ResolutionMode(str, Enum):
    use_local = "use_local"
    use_server = "use_server"
    merge = "merge"


@dataclass
class SyncOperation:
    """One queued mutation.

    Attributes:
        id:              Store-assigned id, increasing in insertion order.
        owner_id:        User whose queue (and resources) this belongs to.
        resource_type:   Target collection, e.g. 'trainings' or 'sets'.
        operation_kind:  INSERT, UPDATE or DELETE.
        payload:         Resource-specific fields to apply.
        status:          Current state machine position.
        retry_count:     Failed or conflicting replay attempts since last reset.
        last_attempt_at: UTC time of the latest replay attempt (None until then).
        created_at:      UTC time of enqueue; replay order key.
    """

    id: int
    owner_id: int
    resource_type: str
    operation_kind: OperationKind
    payload: dict[str, Any]
    status: SyncStatus = SyncStatus.pending
    retry_count: int = 0
    last_attempt_at: datetime | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "resource_type": self.resource_type,
            "operation_kind": self.operation_kind.value,
            "payload": self.payload,
            "status": self.status.value,
            "retry_count": self.retry_count,
            "last_attempt_at": self.last_attempt_at,
            "created_at": self.created_at,
        }


@dataclass
class NewOperation:
    """A validated enqueue item, not yet stored."""

    resource_type: str
    operation_kind: OperationKind
    payload: dict[str, Any]


@dataclass
class RejectedItem:
    """An enqueue item that was not stored, with its position in the request."""

    index: int
    reason: str


@dataclass
class EnqueueResult:
    operations: list[SyncOperation] = field(default_factory=list)
    rejected: list[RejectedItem] = field(default_factory=list)


@dataclass
class ReplaySummary:
    """Outcome counts for one ``process_pending`` call.

    Attributes:
        processed: Operations actually attempted.
        succeeded: Attempts that ended ``synced``.
        failed:    Attempts that ended ``failed`` or ``conflict``.
        conflicts: The subset of ``failed`` that ended ``conflict``.
        deferred:  Selected operations left ``pending`` by the batch deadline.
        total:     Operations selected for this batch.
    """

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    conflicts: int = 0
    deferred: int = 0
    total: int = 0


@dataclass
class SyncStatusReport:
    status_counts: dict[str, int]
    conflicts: list[SyncOperation]
    last_sync: datetime | None = None
