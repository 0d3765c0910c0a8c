"""Typed responses for controller command requests.

The controller answers a write with free-form text; only HTTP success is
part of the contract.  The body is kept for diagnostics.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


class CommandAck(BaseModel):
    """Acknowledgement of a single actuator write."""

    model_config = ConfigDict(frozen=True)

    name: str
    wire_name: str
    value: str
    response_text: str = ""
    sent_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
