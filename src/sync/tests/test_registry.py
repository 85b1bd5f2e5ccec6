"""Tests for the applier registry."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.sync.appliers import DEFAULT_APPLIERS, build_default_registry
from src.sync.base import OperationKind
from src.sync.errors import ApplierError, RegistryConfigError, UnsupportedOperation
from src.sync.registry import ApplierRegistry


def _full(registry: ApplierRegistry, resource_type: str) -> None:
    for kind in OperationKind:
        registry.register(resource_type, kind, AsyncMock())


class TestRegister:
    def test_get_returns_registered_applier(self) -> None:
        registry = ApplierRegistry()
        applier = AsyncMock()
        registry.register("trainings", OperationKind.INSERT, applier)
        assert registry.get("trainings", OperationKind.INSERT) is applier

    def test_kind_accepts_any_case(self) -> None:
        registry = ApplierRegistry()
        applier = AsyncMock()
        registry.register("sets", "update", applier)
        assert registry.get("sets", "UPDATE") is applier
        assert registry.supports("sets", OperationKind.UPDATE)

    def test_reregistering_replaces(self) -> None:
        registry = ApplierRegistry()
        first, second = AsyncMock(), AsyncMock()
        registry.register("trainings", "DELETE", first)
        registry.register("trainings", "DELETE", second)
        assert registry.get("trainings", "DELETE") is second
        assert len(registry) == 1

    @pytest.mark.parametrize(
        ("resource_type", "kind", "applier"),
        [
            ("trainings", "UPSERT", AsyncMock()),
            ("", "INSERT", AsyncMock()),
            ("trainings", "INSERT", "not callable"),
        ],
    )
    def test_bad_registration_rejected(self, resource_type, kind, applier) -> None:
        with pytest.raises(RegistryConfigError):
            ApplierRegistry().register(resource_type, kind, applier)


class TestLookup:
    def test_unknown_resource_type_is_unsupported(self) -> None:
        registry = ApplierRegistry()
        _full(registry, "trainings")
        with pytest.raises(UnsupportedOperation) as exc_info:
            registry.get("progress_photos", "INSERT")
        assert exc_info.value.resource_type == "progress_photos"
        assert isinstance(exc_info.value, ApplierError)

    def test_unknown_kind_is_unsupported(self) -> None:
        registry = ApplierRegistry()
        _full(registry, "trainings")
        with pytest.raises(UnsupportedOperation):
            registry.get("trainings", "TRUNCATE")
        assert not registry.supports("trainings", "TRUNCATE")


class TestValidate:
    def test_empty_registry_is_invalid(self) -> None:
        with pytest.raises(RegistryConfigError):
            ApplierRegistry().validate()

    def test_missing_kinds_listed(self) -> None:
        registry = ApplierRegistry()
        _full(registry, "trainings")
        registry.register("sets", "INSERT", AsyncMock())

        with pytest.raises(RegistryConfigError) as exc_info:
            registry.validate()

        message = str(exc_info.value)
        assert "sets/UPDATE" in message
        assert "sets/DELETE" in message
        assert "trainings" not in message

    def test_complete_registry_passes(self) -> None:
        registry = ApplierRegistry()
        _full(registry, "trainings")
        _full(registry, "sets")
        registry.validate()
        assert registry.resource_types == ["sets", "trainings"]


class TestDefaultRegistry:
    def test_covers_every_resource_and_kind(self) -> None:
        registry = build_default_registry()
        assert registry.resource_types == sorted(
            ["trainings", "sets", "nutrition_entries", "body_measurements", "user_profiles"]
        )
        assert len(registry) == 15
        for resource_type in registry.resource_types:
            for kind in OperationKind:
                assert registry.get(resource_type, kind) is DEFAULT_APPLIERS[resource_type][kind]
