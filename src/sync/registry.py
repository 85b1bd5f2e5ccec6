"""Applier registry — maps (resource_type, operation_kind) to an applier.

An applier is an async callable ``(conn, payload, owner_id) -> None``.  It
returns normally on success and raises ``UniquenessViolation`` or an
``ApplierError`` on failure.  ``conn`` is whatever transaction handle the
operation store hands out for the unit of work.

The registry is filled at startup and checked with :meth:`validate`, so a
half-registered resource type is a configuration error rather than a
surprise at replay time.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from src.sync.base import OperationKind
from src.sync.errors import RegistryConfigError, UnsupportedOperation

logger = logging.getLogger("sportapp.sync.registry")

Applier = Callable[[Any, dict[str, Any], int], Awaitable[None]]


class ApplierRegistry:
    """Registry of mutation appliers.

    Usage::

        registry = ApplierRegistry()
        registry.register("trainings", OperationKind.INSERT, insert_training)
        registry.register("trainings", OperationKind.UPDATE, update_training)
        registry.register("trainings", OperationKind.DELETE, delete_training)
        registry.validate()

        applier = registry.get("trainings", OperationKind.INSERT)
        await applier(conn, payload, owner_id)
    """

    def __init__(self) -> None:
        self._appliers: dict[tuple[str, OperationKind], Applier] = {}

    def register(
        self, resource_type: str, operation_kind: OperationKind | str, applier: Applier
    ) -> None:
        """Add an applier.  Re-registering the same pair replaces the old one."""
        kind = OperationKind.parse(operation_kind)
        if kind is None:
            raise RegistryConfigError(
                f"Unknown operation kind {operation_kind!r} for '{resource_type}'"
            )
        if not resource_type:
            raise RegistryConfigError("resource_type must be a non-empty string")
        if not callable(applier):
            raise RegistryConfigError(
                f"Applier for {kind.value} on '{resource_type}' is not callable"
            )
        self._appliers[(resource_type, kind)] = applier
        logger.debug("Registered applier %s/%s", resource_type, kind.value)

    def get(self, resource_type: str, operation_kind: OperationKind | str) -> Applier:
        """Return the applier for a pair.

        Raises:
            UnsupportedOperation: If nothing is registered for it.
        """
        kind = OperationKind.parse(operation_kind)
        applier = self._appliers.get((resource_type, kind)) if kind else None
        if applier is None:
            raise UnsupportedOperation(resource_type, str(operation_kind))
        return applier

    def supports(self, resource_type: str, operation_kind: OperationKind | str) -> bool:
        kind = OperationKind.parse(operation_kind)
        return kind is not None and (resource_type, kind) in self._appliers

    @property
    def resource_types(self) -> list[str]:
        return sorted({rt for rt, _ in self._appliers})

    def validate(self) -> None:
        """Check that every registered resource type handles all operation kinds.

        Raises:
            RegistryConfigError: Listing every missing (resource_type, kind) pair.
        """
        if not self._appliers:
            raise RegistryConfigError("No sync appliers registered")

        missing = [
            f"{rt}/{kind.value}"
            for rt in self.resource_types
            for kind in OperationKind
            if (rt, kind) not in self._appliers
        ]
        if missing:
            raise RegistryConfigError(
                "Incomplete sync applier registration: missing " + ", ".join(missing)
            )
        logger.info(
            "Sync applier registry valid: %d resource types (%s)",
            len(self.resource_types),
            ", ".join(self.resource_types),
        )

    def __len__(self) -> int:
        return len(self._appliers)
