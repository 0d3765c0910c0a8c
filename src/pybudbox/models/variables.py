"""Typed controller variables and snapshots decoded from the status feed."""

from __future__ import annotations

import enum
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class VariableKind(enum.StrEnum):
    """Type of a controller variable, derived from the feed's type tag."""

    BOOL = "BOOL"
    REAL = "REAL"

    @classmethod
    def from_type_tag(cls, tag: str) -> VariableKind | None:
        """Map a feed type tag (e.g. ``"BOOL"``, ``"LREAL"``) to a kind.

        Returns ``None`` for tags the library does not decode.
        """
        upper = tag.upper()
        if "REAL" in upper:
            return cls.REAL
        if "BOOL" in upper:
            return cls.BOOL
        return None


class DeviceVariable(BaseModel):
    """One decoded variable from a single poll."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: VariableKind
    value: float | int

    @property
    def is_on(self) -> bool:
        """Truthiness of the value (meaningful for BOOL actuators)."""
        return bool(self.value)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DeviceSnapshot(BaseModel):
    """Immutable point-in-time view of every variable in one poll.

    ``variables`` keeps feed order.  A snapshot is always replaced as a
    whole by the next accepted poll; it is never patched.
    """

    model_config = ConfigDict(frozen=True)

    variables: dict[str, DeviceVariable] = Field(default_factory=dict)
    captured_at: datetime = Field(default_factory=_utcnow)
    generation: int = 0

    def __contains__(self, name: object) -> bool:
        return name in self.variables

    def __len__(self) -> int:
        return len(self.variables)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self.variables)

    def get(self, name: str) -> DeviceVariable | None:
        return self.variables.get(name)

    def value(self, name: str, default: Any = None) -> Any:
        variable = self.variables.get(name)
        return default if variable is None else variable.value

    def missing(self, required: Iterable[str]) -> list[str]:
        """Names from *required* that are absent from this snapshot, in order."""
        return [name for name in required if name not in self.variables]

    def as_values(self) -> dict[str, float | int]:
        return {name: variable.value for name, variable in self.variables.items()}
