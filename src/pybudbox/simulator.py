"""Local water tank simulation.

While the pump is on, the tank drains at a fixed flow rate purely from
elapsed ticks; no network I/O happens here.  All mutating methods are
synchronous so a tick can never interleave with a manual adjustment.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pybudbox._constants import FLOW_PERIOD_SECONDS, FLOW_QUANTITY, LEVEL_EPSILON
from pybudbox._scheduler import PeriodicTask
from pybudbox.models.resource import ResourceState, StartResult

_logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class FlowRate:
    """Flow expressed as *quantity* litres per *period_seconds*."""

    quantity: float = FLOW_QUANTITY
    period_seconds: float = FLOW_PERIOD_SECONDS

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError(f"quantity must be positive, got {self.quantity}")
        if self.period_seconds <= 0:
            raise ValueError(f"period_seconds must be positive, got {self.period_seconds}")

    @property
    def per_second(self) -> float:
        return self.quantity / self.period_seconds


class ResourceSimulator:
    """Optimistic model of the water tank between remote syncs.

    Parameters
    ----------
    rate_per_second : float
        Litres dispensed per tick-second.
    initial : ResourceState or None
        Starting counters; defaults to an empty tank.
    tick_interval : float
        Seconds between automatic ticks when *autorun* is on.
    autorun : bool
        Arm a ticker on the running event loop while active.  Disable to
        drive :meth:`tick` by hand.
    on_change : callable or None
        Called with the new state after every mutation.
    on_exhausted : callable or None
        Called with the final state when the tank runs dry.
    """

    def __init__(
        self,
        rate_per_second: float,
        *,
        initial: ResourceState | None = None,
        tick_interval: float = 1.0,
        autorun: bool = True,
        on_change: Callable[[ResourceState], None] | None = None,
        on_exhausted: Callable[[ResourceState], None] | None = None,
    ) -> None:
        if rate_per_second <= 0:
            raise ValueError(f"rate_per_second must be positive, got {rate_per_second}")
        state = initial if initial is not None else ResourceState()
        self._rate = rate_per_second
        self._dispensed = state.dispensed_total
        self._level = state.level_remaining
        self._seconds = state.active_seconds
        self._active = False
        self._autorun = autorun
        self._last_started_at: datetime | None = None
        self._on_change = on_change
        self._on_exhausted = on_exhausted
        self._ticker = PeriodicTask(self.tick, tick_interval, name="budbox-simulator-tick")

    @classmethod
    def from_flow(cls, flow: FlowRate, **kwargs: Any) -> ResourceSimulator:
        return cls(flow.per_second, **kwargs)

    @property
    def rate_per_second(self) -> float:
        return self._rate

    @property
    def active(self) -> bool:
        return self._active

    @property
    def last_started_at(self) -> datetime | None:
        return self._last_started_at

    def snapshot(self) -> ResourceState:
        """Current counters as an immutable value."""
        return ResourceState(
            dispensed_total=self._dispensed,
            level_remaining=self._level,
            active_seconds=self._seconds,
        )

    # ------------------------------------------------------------------
    # Run control
    # ------------------------------------------------------------------

    def start(self) -> StartResult:
        if self._active:
            return StartResult.ALREADY_ACTIVE
        if self._level <= LEVEL_EPSILON:
            _logger.info("Not starting watering: tank is empty")
            return StartResult.EMPTY
        self._active = True
        self._last_started_at = datetime.now(UTC)
        if self._autorun:
            self._ticker.start()
        _logger.info("Watering started with %.3f L in the tank", self._level)
        self._notify_change()
        return StartResult.STARTED

    def stop(self) -> bool:
        """Stop watering.  Returns ``False`` when already stopped."""
        if not self._active:
            return False
        self._deactivate()
        _logger.info("Watering stopped after %d s total", self._seconds)
        self._notify_change()
        return True

    def tick(self) -> ResourceState:
        """Advance the simulation by one second of flow."""
        if not self._active:
            return self.snapshot()

        self._seconds += 1
        remaining = self._level - self._rate
        if remaining <= LEVEL_EPSILON:
            self._dispensed += self._level
            self._level = 0.0
            self._deactivate()
            state = self.snapshot()
            _logger.info("Tank empty after %d s of watering", self._seconds)
            self._notify_change()
            if self._on_exhausted is not None:
                try:
                    self._on_exhausted(state)
                except Exception:
                    _logger.debug("on_exhausted callback failed", exc_info=True)
            return state

        self._dispensed += self._rate
        self._level = remaining
        self._notify_change()
        return self.snapshot()

    # ------------------------------------------------------------------
    # Manual level changes
    # ------------------------------------------------------------------

    def adjust_level(self, delta: float) -> ResourceState:
        """Add *delta* litres (negative drains), clamping at zero."""
        return self._apply_level(max(0.0, self._level + delta))

    def _apply_level(self, level: float) -> ResourceState:
        self._level = level
        if self._active and self._level <= LEVEL_EPSILON:
            self._level = 0.0
            self._deactivate()
            _logger.info("Watering stopped: tank drained by manual adjustment")
        self._notify_change()
        return self.snapshot()

    def set_level(self, target: float) -> ResourceState:
        """Set the tank level to *target* litres.

        Raises
        ------
        ValueError
            If *target* is negative.
        """
        if target < 0:
            raise ValueError(f"tank level cannot be negative, got {target}")
        return self._apply_level(float(target))

    def refill(self, amount: float) -> ResourceState:
        if amount <= 0:
            raise ValueError(f"refill amount must be positive, got {amount}")
        return self.adjust_level(amount)

    def adopt(self, state: ResourceState) -> ResourceState:
        """Replace local counters with *state* (e.g. the remote record)."""
        self._dispensed = state.dispensed_total
        self._level = state.level_remaining
        self._seconds = state.active_seconds
        if self._active and self._level <= LEVEL_EPSILON:
            self._level = 0.0
            self._deactivate()
        self._notify_change()
        return self.snapshot()

    async def close(self) -> None:
        self._active = False
        await self._ticker.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _deactivate(self) -> None:
        self._active = False
        self._ticker.stop()

    def _notify_change(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self.snapshot())
        except Exception:
            _logger.debug("on_change callback failed", exc_info=True)
