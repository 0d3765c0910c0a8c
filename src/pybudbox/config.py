"""Client configuration for pybudbox."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from typing import Any

from pybudbox import _constants
from pybudbox.exceptions import BudboxConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_names(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _env_mapping(value: str) -> dict[str, str]:
    """Parse ``logical=wire`` pairs separated by commas.

    A bare name maps to itself.
    """
    mapping: dict[str, str] = {}
    for part in _env_names(value):
        logical, sep, wire = part.partition("=")
        logical = logical.strip()
        wire = wire.strip() if sep else logical
        if not logical or not wire:
            raise BudboxConfigError(f"Invalid writable variable entry: {part!r}")
        mapping[logical] = wire
    return mapping


@dataclasses.dataclass(frozen=True)
class BudboxConfig:
    """Client configuration.

    Parameters
    ----------
    controller_url : str
        Base URL of the controller (PLC) web interface.
    status_path : str
        Path of the CSV status feed on the controller.
    command_path : str
        Path of the form-encoded command endpoint on the controller.
    resource_url : str
        Full URL of the remote watering record (GET/POST JSON).
    secure_context : bool
        Whether the caller runs in a secure origin.  A secure context
        cannot reach an ``http://`` controller; links report ``BLOCKED``.
    poll_interval : float
        Seconds between polls while connected.
    request_timeout : float
        Upper bound in seconds for any single request.
    backoff_base : float
        First retry delay in seconds after a failed poll.
    backoff_max : float
        Cap for the doubling retry delay.
    max_consecutive_failures : int
        Failed polls after which automatic retry stops until a manual
        reconnect.
    confirm_delay : float
        Seconds to wait after a successful write before the confirming poll.
    required_variables : tuple[str, ...]
        Feed names that must be present for a poll to count as connected.
    writable_variables : Mapping[str, str]
        Logical name to controller wire name for writable actuators.
    flow_quantity : float
        Litres dispensed per ``flow_period`` while watering.
    flow_period : float
        Seconds over which ``flow_quantity`` is dispensed.
    tick_interval : float
        Seconds between simulator ticks.
    sync_interval : float
        Seconds between pushes to the remote watering record.
    refill_amount : float
        Default litres added by a refill.
    """

    controller_url: str = _constants.CONTROLLER_URL
    status_path: str = _constants.STATUS_PATH
    command_path: str = _constants.COMMAND_PATH
    resource_url: str = _constants.RESOURCE_URL
    secure_context: bool = False
    poll_interval: float = 2.0
    request_timeout: float = 5.0
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    max_consecutive_failures: int = 8
    confirm_delay: float = 0.1
    required_variables: tuple[str, ...] = _constants.REQUIRED_VARIABLES
    writable_variables: Mapping[str, str] = dataclasses.field(
        default_factory=lambda: dict(_constants.WRITABLE_VARIABLES)
    )
    flow_quantity: float = _constants.FLOW_QUANTITY
    flow_period: float = _constants.FLOW_PERIOD_SECONDS
    tick_interval: float = 1.0
    sync_interval: float = 15.0
    refill_amount: float = _constants.REFILL_AMOUNT

    def __post_init__(self) -> None:
        for name in ("poll_interval", "request_timeout", "backoff_base", "backoff_max", "tick_interval", "sync_interval"):
            if getattr(self, name) <= 0:
                raise BudboxConfigError(f"{name} must be positive, got {getattr(self, name)}")
        if self.backoff_max < self.backoff_base:
            raise BudboxConfigError("backoff_max must not be smaller than backoff_base")
        if self.max_consecutive_failures < 1:
            raise BudboxConfigError("max_consecutive_failures must be at least 1")
        if self.confirm_delay < 0:
            raise BudboxConfigError("confirm_delay must not be negative")
        if self.flow_quantity <= 0 or self.flow_period <= 0:
            raise BudboxConfigError("flow_quantity and flow_period must be positive")
        if not self.controller_url:
            raise BudboxConfigError("controller_url is required")
        object.__setattr__(self, "required_variables", tuple(self.required_variables))
        object.__setattr__(self, "writable_variables", dict(self.writable_variables))

    @property
    def status_url(self) -> str:
        return f"{self.controller_url.rstrip('/')}{self.status_path}"

    @property
    def command_url(self) -> str:
        return f"{self.controller_url.rstrip('/')}{self.command_path}"

    @classmethod
    def from_env(cls, **overrides: Any) -> BudboxConfig:
        """Create configuration from environment variables.

        Reads optional ``BUDBOX_*`` variables.  Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        BudboxConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "BUDBOX_CONTROLLER_URL": "controller_url",
            "BUDBOX_STATUS_PATH": "status_path",
            "BUDBOX_COMMAND_PATH": "command_path",
            "BUDBOX_RESOURCE_URL": "resource_url",
        }
        _ENV_FLOAT_MAP = {
            "BUDBOX_POLL_INTERVAL": "poll_interval",
            "BUDBOX_REQUEST_TIMEOUT": "request_timeout",
            "BUDBOX_BACKOFF_BASE": "backoff_base",
            "BUDBOX_BACKOFF_MAX": "backoff_max",
            "BUDBOX_CONFIRM_DELAY": "confirm_delay",
            "BUDBOX_FLOW_QUANTITY": "flow_quantity",
            "BUDBOX_FLOW_PERIOD": "flow_period",
            "BUDBOX_TICK_INTERVAL": "tick_interval",
            "BUDBOX_SYNC_INTERVAL": "sync_interval",
            "BUDBOX_REFILL_AMOUNT": "refill_amount",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                try:
                    config_kwargs[field_name] = float(val)
                except ValueError as exc:
                    raise BudboxConfigError(f"{env_key} must be a number, got {val!r}") from exc

        failures_env = env.get("BUDBOX_MAX_CONSECUTIVE_FAILURES")
        if failures_env is not None and "max_consecutive_failures" not in overrides:
            try:
                config_kwargs["max_consecutive_failures"] = int(failures_env)
            except ValueError as exc:
                raise BudboxConfigError(
                    f"BUDBOX_MAX_CONSECUTIVE_FAILURES must be an integer, got {failures_env!r}"
                ) from exc

        if "secure_context" not in overrides:
            config_kwargs["secure_context"] = _env_bool(env.get("BUDBOX_SECURE_CONTEXT"), False)

        required_env = env.get("BUDBOX_REQUIRED_VARIABLES")
        if required_env is not None and "required_variables" not in overrides:
            config_kwargs["required_variables"] = _env_names(required_env)

        writable_env = env.get("BUDBOX_WRITABLE_VARIABLES")
        if writable_env is not None and "writable_variables" not in overrides:
            config_kwargs["writable_variables"] = _env_mapping(writable_env)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
