"""Exception hierarchy for the offline sync queue.

Caller-facing errors (``SyncValidationError``, ``OperationNotFound``) are
raised out of the engine and turned into HTTP responses by the router.
Applier errors never leave the replay loop: ``UniquenessViolation`` marks an
operation ``conflict``, every other exception marks it ``failed``.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for sync queue errors."""


class SyncValidationError(SyncError):
    """Malformed request: bad resolution mode, missing merge data, bad cleanup age."""


class OperationNotFound(SyncError):
    """Target operation is missing, owned by someone else, or in the wrong state."""

    def __init__(self, operation_id: int, expected_status: str | None = None) -> None:
        self.operation_id = operation_id
        self.expected_status = expected_status
        detail = f"Sync operation {operation_id} not found"
        if expected_status:
            detail += f" in status '{expected_status}'"
        super().__init__(detail)


class RegistryConfigError(SyncError):
    """The applier registry is incomplete or inconsistent. Raised at startup."""


# ---------- Applier outcomes ----------


class UniquenessViolation(SyncError):
    """The mutation clashes with an existing unique row on the server."""


class ApplierError(SyncError):
    """Any applier failure that is not a uniqueness clash."""


class UnsupportedOperation(ApplierError):
    """No applier is registered for the resource type / operation kind."""

    def __init__(self, resource_type: str, operation_kind: str) -> None:
        self.resource_type = resource_type
        self.operation_kind = operation_kind
        super().__init__(
            f"Unsupported sync operation: {operation_kind} on '{resource_type}'"
        )


class ResourceNotOwned(ApplierError):
    """The targeted row does not exist or belongs to another owner."""


class InvalidPayload(ApplierError):
    """The payload does not fit the resource's schema."""


class ReferenceViolation(ApplierError):
    """The payload references a row that does not exist (foreign key)."""
