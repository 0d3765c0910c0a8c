"""Typed models for controller variables, connection and watering state."""

from pybudbox.models.command_responses import CommandAck
from pybudbox.models.connection import ConnectionState
from pybudbox.models.resource import FetchOutcome, ResourceState, StartResult, SyncRecord
from pybudbox.models.variables import DeviceSnapshot, DeviceVariable, VariableKind

__all__ = [
    "CommandAck",
    "ConnectionState",
    "DeviceSnapshot",
    "DeviceVariable",
    "FetchOutcome",
    "ResourceState",
    "StartResult",
    "SyncRecord",
    "VariableKind",
]
