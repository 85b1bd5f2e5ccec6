"""PostgreSQL appliers for replayed sync operations.

Each applier validates the payload against its pydantic model and runs one
owner-scoped statement on the unit-of-work connection.  Updates and deletes
always include the owner in the targeting predicate; when nothing matches
the applier raises ``ResourceNotOwned`` instead of silently succeeding.

asyncpg errors are classified by SQLSTATE:

    23505 unique_violation       → UniquenessViolation (operation → conflict)
    23503 foreign_key_violation  → ReferenceViolation
    23502 / 23514 / 22001        → InvalidPayload
    anything else                → ApplierError
"""

from __future__ import annotations

import functools
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar

import asyncpg
from pydantic import BaseModel, ValidationError

from src.models.fitness import (
    BodyMeasurementCreate,
    BodyMeasurementUpdate,
    NutritionEntryCreate,
    NutritionEntryUpdate,
    ResourceRef,
    SetCreate,
    SetUpdate,
    TrainingCreate,
    TrainingUpdate,
    UserProfileCreate,
    UserProfileUpdate,
)
from src.services.database import affected_rows, to_db_timestamp
from src.sync.base import OperationKind
from src.sync.errors import (
    ApplierError,
    InvalidPayload,
    ReferenceViolation,
    ResourceNotOwned,
    UniquenessViolation,
)
from src.sync.registry import ApplierRegistry

logger = logging.getLogger("sportapp.sync.appliers")

M = TypeVar("M", bound=BaseModel)

_INVALID_DATA_STATES = {"23502", "23514", "22001"}


def translate_db_error(exc: asyncpg.PostgresError) -> Exception:
    """Map a Postgres error to the sync error taxonomy."""
    sqlstate = getattr(exc, "sqlstate", None)
    constraint = getattr(exc, "constraint_name", None) or "unknown constraint"
    if sqlstate == "23505":
        return UniquenessViolation(f"Unique constraint violated ({constraint})")
    if sqlstate == "23503":
        return ReferenceViolation(f"Referenced row does not exist ({constraint})")
    if sqlstate in _INVALID_DATA_STATES:
        return InvalidPayload(f"Rejected by database ({sqlstate})")
    return ApplierError(f"Database error {sqlstate or type(exc).__name__}")


def db_applier(
    fn: Callable[[asyncpg.Connection, dict[str, Any], int], Awaitable[None]],
) -> Callable[[asyncpg.Connection, dict[str, Any], int], Awaitable[None]]:
    """Translate payload validation and asyncpg errors raised by ``fn``."""

    @functools.wraps(fn)
    async def wrapper(conn: asyncpg.Connection, payload: dict[str, Any], owner_id: int) -> None:
        try:
            await fn(conn, payload, owner_id)
        except ValidationError as exc:
            raise InvalidPayload(
                f"{fn.__name__}: {exc.error_count()} invalid field(s)"
            ) from exc
        except asyncpg.PostgresError as exc:
            logger.debug(
                "%s rejected by database (sqlstate=%s)",
                fn.__name__,
                getattr(exc, "sqlstate", None),
            )
            raise translate_db_error(exc) from exc

    return wrapper


def _parse(model: type[M], payload: dict[str, Any]) -> M:
    return model.model_validate(payload)


def _update_values(body: BaseModel) -> dict[str, Any]:
    updates = body.model_dump(exclude_unset=True, exclude={"id"})
    if not updates:
        raise InvalidPayload("No fields to update")
    return {
        key: to_db_timestamp(value) if isinstance(value, datetime) else value
        for key, value in updates.items()
    }


def _set_clause(updates: dict[str, Any], start: int) -> str:
    return ", ".join(f"{key} = ${i}" for i, key in enumerate(updates, start=start))


def _require_changed(status: str, target: str) -> None:
    if affected_rows(status) == 0:
        raise ResourceNotOwned(f"{target} not found for this user")


# ---------- Trainings ----------

@db_applier
async def insert_training(conn: asyncpg.Connection, payload: dict[str, Any], owner_id: int) -> None:
    body = _parse(TrainingCreate, payload)
    await conn.execute(
        """
        INSERT INTO trainings (user_id, nom, date, duration, notes, completed)
        VALUES ($1, $2, COALESCE($3::timestamp, NOW() AT TIME ZONE 'UTC'), $4, $5, $6)
        """,
        owner_id, body.nom, to_db_timestamp(body.date), body.duration, body.notes, body.completed,
    )


@db_applier
async def update_training(conn: asyncpg.Connection, payload: dict[str, Any], owner_id: int) -> None:
    body = _parse(TrainingUpdate, payload)
    updates = _update_values(body)
    status = await conn.execute(
        f"UPDATE trainings SET {_set_clause(updates, 3)} WHERE id = $1 AND user_id = $2",
        body.id, owner_id, *updates.values(),
    )
    _require_changed(status, f"Training {body.id}")


@db_applier
async def delete_training(conn: asyncpg.Connection, payload: dict[str, Any], owner_id: int) -> None:
    ref = _parse(ResourceRef, payload)
    status = await conn.execute(
        "DELETE FROM trainings WHERE id = $1 AND user_id = $2",
        ref.id, owner_id,
    )
    _require_changed(status, f"Training {ref.id}")


# ---------- Sets ----------
# Sets have no user_id column; ownership goes through the parent training.

@db_applier
async def insert_set(conn: asyncpg.Connection, payload: dict[str, Any], owner_id: int) -> None:
    body = _parse(SetCreate, payload)
    owned = await conn.fetchval(
        "SELECT 1 FROM trainings WHERE id = $1 AND user_id = $2 FOR KEY SHARE",
        body.training_id, owner_id,
    )
    if not owned:
        raise ResourceNotOwned(f"Training {body.training_id} not found for this user")
    await conn.execute(
        """
        INSERT INTO sets (training_id, exercise_id, reps, weight_kg, rest_seconds, set_order, notes)
        VALUES ($1, $2, $3, $4, $5, $6, $7)
        """,
        body.training_id, body.exercise_id, body.reps, body.weight_kg,
        body.rest_seconds, body.set_order, body.notes,
    )


@db_applier
async def update_set(conn: asyncpg.Connection, payload: dict[str, Any], owner_id: int) -> None:
    body = _parse(SetUpdate, payload)
    updates = _update_values(body)
    status = await conn.execute(
        f"""
        UPDATE sets SET {_set_clause(updates, 3)}
        WHERE id = $1 AND training_id IN (SELECT id FROM trainings WHERE user_id = $2)
        """,
        body.id, owner_id, *updates.values(),
    )
    _require_changed(status, f"Set {body.id}")


@db_applier
async def delete_set(conn: asyncpg.Connection, payload: dict[str, Any], owner_id: int) -> None:
    ref = _parse(ResourceRef, payload)
    status = await conn.execute(
        """
        DELETE FROM sets
        WHERE id = $1 AND training_id IN (SELECT id FROM trainings WHERE user_id = $2)
        """,
        ref.id, owner_id,
    )
    _require_changed(status, f"Set {ref.id}")


# ---------- Nutrition entries ----------

@db_applier
async def insert_nutrition_entry(
    conn: asyncpg.Connection, payload: dict[str, Any], owner_id: int
) -> None:
    body = _parse(NutritionEntryCreate, payload)
    await conn.execute(
        """
        INSERT INTO nutrition_entries (user_id, food_id, quantity_g, meal_type, consumed_at)
        VALUES ($1, $2, $3, $4, COALESCE($5::timestamp, NOW() AT TIME ZONE 'UTC'))
        """,
        owner_id, body.food_id, body.quantity_g, body.meal_type, to_db_timestamp(body.consumed_at),
    )


@db_applier
async def update_nutrition_entry(
    conn: asyncpg.Connection, payload: dict[str, Any], owner_id: int
) -> None:
    body = _parse(NutritionEntryUpdate, payload)
    updates = _update_values(body)
    status = await conn.execute(
        f"UPDATE nutrition_entries SET {_set_clause(updates, 3)} WHERE id = $1 AND user_id = $2",
        body.id, owner_id, *updates.values(),
    )
    _require_changed(status, f"Nutrition entry {body.id}")


@db_applier
async def delete_nutrition_entry(
    conn: asyncpg.Connection, payload: dict[str, Any], owner_id: int
) -> None:
    ref = _parse(ResourceRef, payload)
    status = await conn.execute(
        "DELETE FROM nutrition_entries WHERE id = $1 AND user_id = $2",
        ref.id, owner_id,
    )
    _require_changed(status, f"Nutrition entry {ref.id}")


# ---------- Body measurements ----------

@db_applier
async def insert_body_measurement(
    conn: asyncpg.Connection, payload: dict[str, Any], owner_id: int
) -> None:
    body = _parse(BodyMeasurementCreate, payload)
    await conn.execute(
        """
        INSERT INTO body_measurements (
            user_id, weight_kg, height_cm, body_fat_percentage, muscle_mass_kg,
            chest_cm, waist_cm, hips_cm, bicep_cm, thigh_cm, notes, measured_at
        ) VALUES (
            $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11,
            COALESCE($12::timestamp, NOW() AT TIME ZONE 'UTC')
        )
        """,
        owner_id,
        body.weight_kg, body.height_cm, body.body_fat_percentage, body.muscle_mass_kg,
        body.chest_cm, body.waist_cm, body.hips_cm, body.bicep_cm, body.thigh_cm,
        body.notes, to_db_timestamp(body.measured_at),
    )


@db_applier
async def update_body_measurement(
    conn: asyncpg.Connection, payload: dict[str, Any], owner_id: int
) -> None:
    body = _parse(BodyMeasurementUpdate, payload)
    updates = _update_values(body)
    status = await conn.execute(
        f"UPDATE body_measurements SET {_set_clause(updates, 3)} WHERE id = $1 AND user_id = $2",
        body.id, owner_id, *updates.values(),
    )
    _require_changed(status, f"Body measurement {body.id}")


@db_applier
async def delete_body_measurement(
    conn: asyncpg.Connection, payload: dict[str, Any], owner_id: int
) -> None:
    ref = _parse(ResourceRef, payload)
    status = await conn.execute(
        "DELETE FROM body_measurements WHERE id = $1 AND user_id = $2",
        ref.id, owner_id,
    )
    _require_changed(status, f"Body measurement {ref.id}")


# ---------- User profiles ----------
# One profile per user (UNIQUE user_id), so a second insert is a conflict.

@db_applier
async def insert_user_profile(
    conn: asyncpg.Connection, payload: dict[str, Any], owner_id: int
) -> None:
    body = _parse(UserProfileCreate, payload)
    data = body.model_dump(exclude_unset=True)
    data["user_id"] = owner_id

    columns = ", ".join(data.keys())
    placeholders = ", ".join(f"${i}" for i in range(1, len(data) + 1))
    await conn.execute(
        f"INSERT INTO user_profiles ({columns}) VALUES ({placeholders})",
        *data.values(),
    )


@db_applier
async def update_user_profile(
    conn: asyncpg.Connection, payload: dict[str, Any], owner_id: int
) -> None:
    body = _parse(UserProfileUpdate, payload)
    updates = _update_values(body)
    status = await conn.execute(
        f"""
        UPDATE user_profiles SET {_set_clause(updates, 2)}, updated_at = NOW()
        WHERE user_id = $1
        """,
        owner_id, *updates.values(),
    )
    _require_changed(status, "User profile")


@db_applier
async def delete_user_profile(
    conn: asyncpg.Connection, payload: dict[str, Any], owner_id: int
) -> None:
    status = await conn.execute("DELETE FROM user_profiles WHERE user_id = $1", owner_id)
    _require_changed(status, "User profile")


# ---------- Registry ----------

DEFAULT_APPLIERS: dict[str, dict[OperationKind, Callable[..., Awaitable[None]]]] = {
    "trainings": {
        OperationKind.INSERT: insert_training,
        OperationKind.UPDATE: update_training,
        OperationKind.DELETE: delete_training,
    },
    "sets": {
        OperationKind.INSERT: insert_set,
        OperationKind.UPDATE: update_set,
        OperationKind.DELETE: delete_set,
    },
    "nutrition_entries": {
        OperationKind.INSERT: insert_nutrition_entry,
        OperationKind.UPDATE: update_nutrition_entry,
        OperationKind.DELETE: delete_nutrition_entry,
    },
    "body_measurements": {
        OperationKind.INSERT: insert_body_measurement,
        OperationKind.UPDATE: update_body_measurement,
        OperationKind.DELETE: delete_body_measurement,
    },
    "user_profiles": {
        OperationKind.INSERT: insert_user_profile,
        OperationKind.UPDATE: update_user_profile,
        OperationKind.DELETE: delete_user_profile,
    },
}


def build_default_registry() -> ApplierRegistry:
    """Registry with every PostgreSQL applier, already validated."""
    registry = ApplierRegistry()
    for resource_type, by_kind in DEFAULT_APPLIERS.items():
        for kind, applier in by_kind.items():
            registry.register(resource_type, kind, applier)
    registry.validate()
    return registry
