"""Offline sync endpoints: queue, process, status, conflict resolution, cleanup."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException

from src.dependencies import CurrentUser, SyncService
from src.models.base import ErrorDetail
from src.models.sync import (
    CleanupRequest,
    CleanupResponse,
    ConflictResolutionRequest,
    ConflictResolutionResponse,
    SyncOperationResponse,
    SyncProcessResponse,
    SyncQueueRequest,
    SyncQueueResponse,
    SyncStatusResponse,
)
from src.sync.errors import OperationNotFound, SyncValidationError

router = APIRouter(prefix="/sync", tags=["sync"])

_NOT_FOUND = {404: {"model": ErrorDetail}}
_BAD_REQUEST = {400: {"model": ErrorDetail}}


@router.post("/queue", response_model=SyncQueueResponse, status_code=201)
async def queue_operations(
    user: CurrentUser, engine: SyncService, body: SyncQueueRequest
) -> Any:
    try:
        result = await engine.enqueue(user.user_id, body.operations)
    except SyncValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "operations": [op.to_dict() for op in result.operations],
        "rejected": [{"index": r.index, "reason": r.reason} for r in result.rejected],
    }


@router.post("/process", response_model=SyncProcessResponse)
async def process_queue(user: CurrentUser, engine: SyncService) -> Any:
    summary = await engine.process_pending(user.user_id)
    return {
        "processed": summary.processed,
        "succeeded": summary.succeeded,
        "failed": summary.failed,
        "conflicts": summary.conflicts,
        "deferred": summary.deferred,
        "total": summary.total,
    }


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(user: CurrentUser, engine: SyncService) -> Any:
    report = await engine.status(user.user_id)
    return {
        "status_counts": report.status_counts,
        "conflicts": [op.to_dict() for op in report.conflicts],
        "last_sync": report.last_sync,
    }


@router.put(
    "/conflicts/{operation_id}/resolve",
    response_model=ConflictResolutionResponse,
    responses={**_NOT_FOUND, **_BAD_REQUEST},
)
async def resolve_conflict(
    operation_id: int,
    user: CurrentUser,
    engine: SyncService,
    body: ConflictResolutionRequest,
) -> Any:
    try:
        operation = await engine.resolve_conflict(
            user.user_id, operation_id, body.resolution, body.resolved_data
        )
    except SyncValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except OperationNotFound as exc:
        raise HTTPException(status_code=404, detail="Conflict not found") from exc
    return {
        "resolved": True,
        "resolution": body.resolution,
        "operation": operation.to_dict(),
    }


@router.post(
    "/operations/{operation_id}/retry",
    response_model=SyncOperationResponse,
    responses=_NOT_FOUND,
)
async def retry_operation(operation_id: int, user: CurrentUser, engine: SyncService) -> Any:
    try:
        operation = await engine.retry_failed(user.user_id, operation_id)
    except OperationNotFound as exc:
        raise HTTPException(status_code=404, detail="Failed operation not found") from exc
    return {"operation": operation.to_dict()}


@router.delete("/cleanup", response_model=CleanupResponse, responses=_BAD_REQUEST)
async def cleanup_synced(
    user: CurrentUser, engine: SyncService, body: CleanupRequest | None = None
) -> Any:
    older_than_days = body.older_than_days if body else None
    try:
        cleaned = await engine.cleanup(user.user_id, older_than_days)
    except SyncValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"cleaned_count": cleaned}
