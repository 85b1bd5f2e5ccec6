"""Sync queue engine — enqueue, replay, status, conflict resolution, cleanup.

The engine owns the operation state machine (see ``src.sync.base``).  It
talks to an :class:`~src.sync.store.OperationStore` for persistence and to an
:class:`~src.sync.registry.ApplierRegistry` for the per-resource mutations.

Replay is strictly sequential per owner: later operations may depend on the
side effects of earlier ones (a set references the training inserted just
before it), so a batch is never parallelised.  Different owners' batches are
independent and may run concurrently.

Each replayed operation is one unit of work: the applier's statement(s) and
the ``synced`` status update commit together.  When the applier raises, that
transaction is rolled back and the ``failed``/``conflict`` status is written
separately, so a failure can never leave a half-applied mutation behind.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any, Callable, Sequence

from src.config import Settings
from src.models.base import utc_now
from src.sync.base import (
    EnqueueResult,
    NewOperation,
    OperationKind,
    RejectedItem,
    ReplaySummary,
    ResolutionMode,
    SyncOperation,
    SyncStatus,
    SyncStatusReport,
)
from src.sync.errors import OperationNotFound, SyncValidationError, UniquenessViolation
from src.sync.registry import ApplierRegistry
from src.sync.store import OperationStore

logger = logging.getLogger("sportapp.sync.engine")

DEFAULT_BATCH_SIZE = 50
DEFAULT_CONFLICT_LIST_LIMIT = 10
DEFAULT_CLEANUP_DAYS = 7


def validate_item(item: Any) -> NewOperation | str:
    """Return a NewOperation for a well-formed enqueue item, else the rejection reason."""
    if not isinstance(item, Mapping):
        return "operation must be an object"

    resource_type = item.get("resource_type")
    if not isinstance(resource_type, str) or not resource_type.strip():
        return "missing resource_type"

    raw_kind = item.get("operation_kind")
    if raw_kind is None or raw_kind == "":
        return "missing operation_kind"
    kind = OperationKind.parse(raw_kind)
    if kind is None:
        return f"unknown operation_kind {raw_kind!r}"

    payload = item.get("payload")
    if payload is None:
        return "missing payload"
    if not isinstance(payload, Mapping):
        return "payload must be an object"

    return NewOperation(
        resource_type=resource_type.strip(),
        operation_kind=kind,
        payload=dict(payload),
    )


class SyncEngine:
    """Offline sync queue for one deployment.

    Usage::

        engine = SyncEngine(PostgresOperationStore(db), build_default_registry())
        result = await engine.enqueue(owner_id, [
            {"resource_type": "trainings", "operation_kind": "INSERT",
             "payload": {"nom": "Leg Day"}},
        ])
        summary = await engine.process_pending(owner_id)
    """

    def __init__(
        self,
        store: OperationStore,
        registry: ApplierRegistry,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_timeout_seconds: float | None = None,
        conflict_list_limit: int = DEFAULT_CONFLICT_LIST_LIMIT,
        cleanup_default_days: int = DEFAULT_CLEANUP_DAYS,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the engine.

        Args:
            store:                 Durable operation log.
            registry:              Appliers keyed by (resource_type, kind).
            batch_size:            Max operations replayed per ``process_pending`` call.
            batch_timeout_seconds: Time budget for one replay batch; None = unbounded.
            conflict_list_limit:   Max conflicts listed by ``status``.
            cleanup_default_days:  Age threshold used when cleanup gets none.
            clock:                 Source of UTC timestamps stored on operations.
            monotonic:             Source of the batch deadline clock.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._store = store
        self._registry = registry
        self._batch_size = batch_size
        self._batch_timeout = batch_timeout_seconds
        self._conflict_list_limit = conflict_list_limit
        self._cleanup_default_days = cleanup_default_days
        self._clock = clock
        self._monotonic = monotonic

    @classmethod
    def from_settings(
        cls, store: OperationStore, registry: ApplierRegistry, settings: Settings
    ) -> "SyncEngine":
        return cls(
            store,
            registry,
            batch_size=settings.sync_batch_size,
            batch_timeout_seconds=settings.sync_batch_timeout_seconds,
            conflict_list_limit=settings.sync_conflict_list_limit,
            cleanup_default_days=settings.sync_cleanup_default_days,
        )

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    async def enqueue(self, owner_id: int, items: Sequence[Any]) -> EnqueueResult:
        """Store each well-formed item as a ``pending`` operation.

        Malformed items are not stored and do not fail the call; they come
        back in ``EnqueueResult.rejected`` with their index and a reason.

        Raises:
            SyncValidationError: If ``items`` is not a list.
        """
        if not isinstance(items, (list, tuple)):
            raise SyncValidationError("Operations array required")

        accepted: list[NewOperation] = []
        rejected: list[RejectedItem] = []
        for index, item in enumerate(items):
            checked = validate_item(item)
            if isinstance(checked, NewOperation):
                accepted.append(checked)
            else:
                rejected.append(RejectedItem(index=index, reason=checked))

        created = await self._store.insert_many(owner_id, accepted, self._clock())

        if rejected:
            logger.info(
                "Sync enqueue for user %s: %d queued, %d rejected",
                owner_id, len(created), len(rejected),
            )
        else:
            logger.info("Sync enqueue for user %s: %d queued", owner_id, len(created))
        return EnqueueResult(operations=created, rejected=rejected)

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    async def process_pending(self, owner_id: int) -> ReplaySummary:
        """Replay the owner's oldest pending operations, one at a time.

        A failing operation never stops the batch.  When the batch deadline
        passes, the operations not yet attempted stay ``pending``.  Errors
        reading the queue itself propagate to the caller.
        """
        pending = await self._store.list_pending(owner_id, self._batch_size)
        summary = ReplaySummary(total=len(pending))
        if not pending:
            logger.debug("Sync replay for user %s: nothing pending", owner_id)
            return summary

        deadline = (
            self._monotonic() + self._batch_timeout
            if self._batch_timeout is not None
            else None
        )

        for op in pending:
            if deadline is not None and self._monotonic() >= deadline:
                summary.deferred = summary.total - summary.processed
                logger.warning(
                    "Sync replay for user %s hit its time budget; %d operations deferred",
                    owner_id, summary.deferred,
                )
                break

            outcome = await self._replay_one(op)
            summary.processed += 1
            if outcome is SyncStatus.synced:
                summary.succeeded += 1
            else:
                summary.failed += 1
                if outcome is SyncStatus.conflict:
                    summary.conflicts += 1

        logger.info(
            "Sync replay for user %s: %d/%d processed, %d synced, %d failed (%d conflicts)",
            owner_id, summary.processed, summary.total,
            summary.succeeded, summary.failed, summary.conflicts,
        )
        return summary

    async def _replay_one(self, op: SyncOperation) -> SyncStatus:
        attempted_at = self._clock()
        try:
            applier = self._registry.get(op.resource_type, op.operation_kind)
            async with self._store.unit_of_work(op.owner_id) as conn:
                await applier(conn, dict(op.payload), op.owner_id)
                await self._store.mark_synced(conn, op.owner_id, op.id, attempted_at)
        except UniquenessViolation as exc:
            outcome = SyncStatus.conflict
            logger.info(
                "Sync operation %s (%s %s) conflicts with server data: %s",
                op.id, op.operation_kind.value, op.resource_type, exc,
            )
        except Exception as exc:
            outcome = SyncStatus.failed
            logger.warning(
                "Sync operation %s (%s %s) failed: %s",
                op.id, op.operation_kind.value, op.resource_type, exc,
            )
        else:
            logger.debug(
                "Sync operation %s (%s %s) synced",
                op.id, op.operation_kind.value, op.resource_type,
            )
            return SyncStatus.synced

        await self._store.record_failure(op.owner_id, op.id, outcome, attempted_at)
        return outcome

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def status(self, owner_id: int) -> SyncStatusReport:
        """Per-status counts, oldest conflicts, and the latest successful sync time."""
        counts = await self._store.count_by_status(owner_id)
        conflicts = await self._store.list_by_status(
            owner_id, SyncStatus.conflict, self._conflict_list_limit
        )
        last_sync = await self._store.last_synced_at(owner_id)
        return SyncStatusReport(
            status_counts={s.value: counts.get(s, 0) for s in SyncStatus},
            conflicts=conflicts,
            last_sync=last_sync,
        )

    # ------------------------------------------------------------------
    # Conflict resolution / retry
    # ------------------------------------------------------------------

    async def resolve_conflict(
        self,
        owner_id: int,
        operation_id: int,
        resolution: ResolutionMode | str,
        resolved_data: Mapping[str, Any] | None = None,
    ) -> SyncOperation:
        """Settle a ``conflict`` operation.

        ``use_local`` re-queues the original payload, ``merge`` re-queues
        ``resolved_data`` instead (both reset ``retry_count``), and
        ``use_server`` marks the operation ``synced`` without applying it.

        Raises:
            SyncValidationError: Unknown resolution, or ``merge`` without data.
            OperationNotFound:   No ``conflict`` operation with that id for this owner.
        """
        try:
            mode = ResolutionMode(resolution)
        except ValueError:
            raise SyncValidationError(f"Invalid resolution {resolution!r}") from None

        if mode is ResolutionMode.merge and not isinstance(resolved_data, Mapping):
            raise SyncValidationError("resolved_data is required for a merge resolution")

        if mode is ResolutionMode.use_server:
            updated = await self._store.transition(
                owner_id, operation_id, SyncStatus.conflict, SyncStatus.synced
            )
        else:
            updated = await self._store.transition(
                owner_id,
                operation_id,
                SyncStatus.conflict,
                SyncStatus.pending,
                payload=dict(resolved_data) if mode is ResolutionMode.merge else None,
                reset_retries=True,
            )

        if updated is None:
            raise OperationNotFound(operation_id, SyncStatus.conflict.value)

        logger.info(
            "Sync conflict %s resolved by user %s with %s",
            operation_id, owner_id, mode.value,
        )
        return updated

    async def retry_failed(self, owner_id: int, operation_id: int) -> SyncOperation:
        """Put a ``failed`` operation back in the queue with its payload unchanged.

        Raises:
            OperationNotFound: No ``failed`` operation with that id for this owner.
        """
        updated = await self._store.transition(
            owner_id, operation_id, SyncStatus.failed, SyncStatus.pending
        )
        if updated is None:
            raise OperationNotFound(operation_id, SyncStatus.failed.value)
        logger.info("Sync operation %s re-queued by user %s", operation_id, owner_id)
        return updated

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def cleanup(self, owner_id: int, older_than_days: int | None = None) -> int:
        """Delete the owner's ``synced`` operations last attempted before the threshold.

        Raises:
            SyncValidationError: If ``older_than_days`` is not a non-negative integer.
        """
        days = self._cleanup_default_days if older_than_days is None else older_than_days
        if isinstance(days, bool) or not isinstance(days, int) or days < 0:
            raise SyncValidationError("older_than_days must be a non-negative integer")

        cutoff = self._clock() - timedelta(days=days)
        deleted = await self._store.delete_synced_before(owner_id, cutoff)
        logger.info(
            "Sync cleanup for user %s: %d synced operations older than %d days removed",
            owner_id, deleted, days,
        )
        return deleted
