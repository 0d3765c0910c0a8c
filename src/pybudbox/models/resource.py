"""Watering resource models: local simulator state and the remote record."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from pybudbox.models._base import BudboxBaseModel, Timestamp


class StartResult(enum.StrEnum):
    """Outcome of :meth:`ResourceSimulator.start`."""

    STARTED = "started"
    ALREADY_ACTIVE = "already_active"
    EMPTY = "empty"

    @property
    def started(self) -> bool:
        return self is StartResult.STARTED


class FetchOutcome(enum.StrEnum):
    """Outcome of pulling the remote record into the simulator."""

    ADOPTED = "adopted"
    KEPT_LOCAL = "kept_local"
    UNREACHABLE = "unreachable"


def _non_negative_float(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return max(0.0, float(value))


def _non_negative_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return max(0, int(value))


class ResourceState(BaseModel):
    """Water tank counters.

    ``dispensed_total`` and ``active_seconds`` only grow while watering;
    ``level_remaining`` never drops below zero.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    dispensed_total: float = Field(
        default=0.0,
        ge=0.0,
        validation_alias=AliasChoices("dispensed_total", "totalDispensed", "totalWateredLitres"),
        serialization_alias="totalDispensed",
    )
    level_remaining: float = Field(
        default=0.0,
        ge=0.0,
        validation_alias=AliasChoices("level_remaining", "levelRemaining", "waterTankLevelLitres", "waterLevel"),
        serialization_alias="levelRemaining",
    )
    active_seconds: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("active_seconds", "activeSeconds", "totalWateringSeconds"),
        serialization_alias="activeSeconds",
    )

    @property
    def is_empty(self) -> bool:
        return self.level_remaining <= 0

    def to_payload(self) -> dict[str, Any]:
        """JSON body for the remote store, including the legacy field names."""
        payload: dict[str, Any] = self.model_dump(by_alias=True)
        payload["totalWateredLitres"] = self.dispensed_total
        payload["waterTankLevelLitres"] = self.level_remaining
        payload["waterLevel"] = self.level_remaining
        payload["totalWateringSeconds"] = self.active_seconds
        return payload


class SyncRecord(BudboxBaseModel):
    """Server-held watering record.

    Numeric fields that are missing or not numbers decode to zero, the
    same way the dashboard treats them.
    """

    dispensed_total: float = Field(
        default=0.0,
        validation_alias=AliasChoices("dispensed_total", "totalDispensed", "totalWateredLitres"),
    )
    level_remaining: float = Field(
        default=0.0,
        validation_alias=AliasChoices("level_remaining", "levelRemaining", "waterTankLevelLitres", "waterLevel"),
    )
    active_seconds: int = Field(
        default=0,
        validation_alias=AliasChoices("active_seconds", "activeSeconds", "totalWateringSeconds"),
    )
    last_write_timestamp: Timestamp = Field(
        default=None,
        validation_alias=AliasChoices("last_write_timestamp", "lastWriteTimestamp", "updatedAt"),
    )
    pump_active: bool | None = None
    last_watering: str | None = None

    @field_validator("dispensed_total", "level_remaining", mode="before")
    @classmethod
    def _coerce_litres(cls, value: Any) -> float:
        return _non_negative_float(value)

    @field_validator("active_seconds", mode="before")
    @classmethod
    def _coerce_seconds(cls, value: Any) -> int:
        return _non_negative_int(value)

    def to_state(self) -> ResourceState:
        return ResourceState(
            dispensed_total=self.dispensed_total,
            level_remaining=self.level_remaining,
            active_seconds=self.active_seconds,
        )
