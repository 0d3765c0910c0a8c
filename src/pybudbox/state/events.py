"""Events reported by a device link.

Links never raise across the poll boundary; every outcome a consumer may
care about is published as a :class:`LinkEvent` instead.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from pybudbox.models.connection import ConnectionState


class LinkEventKind(StrEnum):
    STATE_CHANGED = "state_changed"
    SNAPSHOT = "snapshot"
    POLL_FAILED = "poll_failed"
    RETRY_SCHEDULED = "retry_scheduled"
    RETRIES_EXHAUSTED = "retries_exhausted"
    WRITE_SUCCEEDED = "write_succeeded"
    WRITE_FAILED = "write_failed"


class LinkEvent(BaseModel):
    """A single notification from a :class:`~pybudbox.link.DeviceLink`."""

    model_config = ConfigDict(frozen=True)

    kind: LinkEventKind
    state: ConnectionState
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    message: str = Field(default="", description="Human readable reason, if any")
    error_type: str | None = Field(default=None, description="Exception class name for failures")
    retry_in: float | None = Field(default=None, description="Seconds until the next automatic attempt")
    failures: int = 0
