"""Connection state of a device link."""

from __future__ import annotations

import enum


class ConnectionState(enum.StrEnum):
    """Connectivity of a :class:`~pybudbox.link.DeviceLink`.

    ``BLOCKED`` is terminal until a manual reconnect: the controller is
    structurally unreachable from the current context.
    """

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    BLOCKED = "blocked"

    @property
    def is_online(self) -> bool:
        return self is ConnectionState.CONNECTED
