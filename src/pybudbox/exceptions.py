"""Custom exception hierarchy for pybudbox."""

from __future__ import annotations

from collections.abc import Iterable


class BudboxError(Exception):
    """Base exception for all pybudbox errors."""


class BudboxConfigError(BudboxError):
    """Invalid or missing configuration."""


class BudboxTransportError(BudboxError):
    """HTTP-level failure (network, timeout, non-2xx, invalid body)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class BudboxBlockedError(BudboxTransportError):
    """The controller cannot be reached from this context at all.

    Raised for a mixed security context (a secure origin talking to an
    ``http://`` or ``ws://`` controller).  Links do not retry on their own
    after this; a manual reconnect is required.
    """


class BudboxRemoteUnreachableError(BudboxTransportError):
    """The remote resource store could not be read or written."""


class BudboxProtocolError(BudboxError):
    """A single status feed line could not be decoded."""

    def __init__(self, message: str, *, line: str = "") -> None:
        self.line = line
        super().__init__(message)


class BudboxSchemaError(BudboxError):
    """A structurally valid feed does not match the expected variables.

    Either required variables are missing or a variable changed its type
    tag between polls.
    """

    def __init__(
        self,
        message: str,
        *,
        missing: Iterable[str] = (),
        changed: Iterable[str] = (),
    ) -> None:
        self.missing = tuple(missing)
        self.changed = tuple(changed)
        super().__init__(message)


class BudboxUnknownVariableError(BudboxError):
    """Write requested for a variable outside the writable whitelist."""

    def __init__(self, message: str, *, name: str, valid: Iterable[str] = ()) -> None:
        self.name = name
        self.valid = tuple(valid)
        super().__init__(message)
