"""Pydantic models for the payloads replayed by the offline sync queue.

One family per resource collection: trainings, sets, nutrition entries, body
measurements and user profiles.  ``*Create`` models carry an insert,
``*Update`` models a partial update keyed by ``id``, ``ResourceRef`` a delete.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import Field

from src.models.base import SportAppBase


class ResourceRef(SportAppBase):
    """Target of an update or delete: the server-side row id."""

    id: int = Field(ge=1)


# ---------- Trainings ----------

class TrainingCreate(SportAppBase):
    nom: str = Field(min_length=1, max_length=255)
    date: datetime | None = None
    duration: int | None = Field(default=None, ge=0, le=1440)  # minutes
    notes: str | None = None
    completed: bool = False


class TrainingUpdate(ResourceRef):
    nom: str | None = Field(default=None, min_length=1, max_length=255)
    date: datetime | None = None
    duration: int | None = Field(default=None, ge=0, le=1440)
    notes: str | None = None
    completed: bool | None = None


# ---------- Sets ----------

class SetCreate(SportAppBase):
    training_id: int = Field(ge=1)
    exercise_id: int = Field(ge=1)
    reps: int = Field(ge=1, le=999)
    weight_kg: Decimal | None = Field(default=None, ge=0, le=999)
    rest_seconds: int | None = Field(default=None, ge=0, le=3600)
    set_order: int = Field(ge=1)
    notes: str | None = None


class SetUpdate(ResourceRef):
    reps: int | None = Field(default=None, ge=1, le=999)
    weight_kg: Decimal | None = Field(default=None, ge=0, le=999)
    rest_seconds: int | None = Field(default=None, ge=0, le=3600)
    set_order: int | None = Field(default=None, ge=1)
    notes: str | None = None


# ---------- Nutrition ----------

class NutritionEntryCreate(SportAppBase):
    food_id: int = Field(ge=1)
    quantity_g: Decimal = Field(gt=0, le=9999)
    meal_type: str = Field(default="other", pattern="^(breakfast|lunch|dinner|snack|other)$")
    consumed_at: datetime | None = None


class NutritionEntryUpdate(ResourceRef):
    quantity_g: Decimal | None = Field(default=None, gt=0, le=9999)
    meal_type: str | None = Field(default=None, pattern="^(breakfast|lunch|dinner|snack|other)$")
    consumed_at: datetime | None = None


# ---------- Body measurements ----------

class BodyMeasurementCreate(SportAppBase):
    weight_kg: Decimal | None = Field(default=None, ge=0, le=999)
    height_cm: Decimal | None = Field(default=None, ge=0, le=999)
    body_fat_percentage: Decimal | None = Field(default=None, ge=0, le=100)
    muscle_mass_kg: Decimal | None = Field(default=None, ge=0, le=999)
    chest_cm: Decimal | None = Field(default=None, ge=0, le=999)
    waist_cm: Decimal | None = Field(default=None, ge=0, le=999)
    hips_cm: Decimal | None = Field(default=None, ge=0, le=999)
    bicep_cm: Decimal | None = Field(default=None, ge=0, le=999)
    thigh_cm: Decimal | None = Field(default=None, ge=0, le=999)
    notes: str | None = None
    measured_at: datetime | None = None


class BodyMeasurementUpdate(ResourceRef, BodyMeasurementCreate):
    pass


# ---------- User profiles ----------

class UserProfileCreate(SportAppBase):
    bio: str | None = None
    fitness_level: str | None = Field(
        default=None, pattern="^(beginner|intermediate|advanced)$"
    )
    goals: list[str] | None = None
    privacy_level: str | None = Field(default=None, pattern="^(public|friends|private)$")
    show_progress: bool | None = None
    show_workouts: bool | None = None


class UserProfileUpdate(UserProfileCreate):
    """Profiles are keyed by owner, so no ``id`` is needed."""
