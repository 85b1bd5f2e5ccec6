"""Pydantic request/response models for the offline sync API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from src.models.base import SportAppBase
from src.sync.base import ResolutionMode


# ---------- Requests ----------

class SyncQueueRequest(SportAppBase):
    # Shape checked by SyncEngine.enqueue: a non-list is a 400, bad items are reported.
    operations: Any


class ConflictResolutionRequest(SportAppBase):
    resolution: str  # validated by SyncEngine.resolve_conflict
    resolved_data: Any = None


class CleanupRequest(SportAppBase):
    older_than_days: Any = None  # validated by SyncEngine.cleanup


# ---------- Responses ----------

class SyncOperationRead(SportAppBase):
    id: int
    owner_id: int
    resource_type: str
    operation_kind: str
    payload: dict[str, Any]
    status: str
    retry_count: int
    last_attempt_at: datetime | None = None
    created_at: datetime | None = None


class RejectedOperationRead(SportAppBase):
    index: int
    reason: str


class SyncQueueResponse(SportAppBase):
    operations: list[SyncOperationRead]
    rejected: list[RejectedOperationRead] = Field(default_factory=list)


class SyncProcessResponse(SportAppBase):
    processed: int
    succeeded: int
    failed: int
    conflicts: int
    deferred: int
    total: int


class SyncStatusResponse(SportAppBase):
    status_counts: dict[str, int]
    conflicts: list[SyncOperationRead]
    last_sync: datetime | None = None


class ConflictResolutionResponse(SportAppBase):
    resolved: bool = True
    resolution: ResolutionMode
    operation: SyncOperationRead


class SyncOperationResponse(SportAppBase):
    operation: SyncOperationRead


class CleanupResponse(SportAppBase):
    cleaned_count: int
