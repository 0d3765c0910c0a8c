"""Cancellable scheduled work on the running event loop.

Every periodic activity in the library (link polling, simulator ticks,
remote sync) runs through one of these two primitives so that teardown
can cancel it deterministically.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Any

_logger = logging.getLogger(__name__)


class DelayedCall:
    """Run a coroutine function once after a delay.

    Re-arming replaces any pending run.  Each arm gets a new token; a run
    whose token is no longer current does nothing, so a callback cannot
    fire after :meth:`cancel`.
    """

    def __init__(self, fn: Callable[[], Awaitable[Any]], *, name: str = "delayed-call") -> None:
        self._fn = fn
        self._name = name
        self._token = 0
        self._task: asyncio.Task[None] | None = None
        self._delay: float | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def delay(self) -> float | None:
        """Delay of the currently pending run, if any."""
        return self._delay if self.pending else None

    def arm(self, delay: float) -> None:
        self.cancel()
        self._token += 1
        self._delay = max(0.0, delay)
        self._task = asyncio.get_running_loop().create_task(self._run(self._token, self._delay), name=self._name)

    def cancel(self) -> None:
        self._token += 1
        task = self._task
        self._task = None
        self._delay = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run(self, token: int, delay: float) -> None:
        await asyncio.sleep(delay)
        if token != self._token:
            return
        # Detach before running so the callback may re-arm this call.
        self._task = None
        self._delay = None
        try:
            await self._fn()
        except asyncio.CancelledError:
            raise
        except Exception:
            _logger.warning("Scheduled call %s failed", self._name, exc_info=True)


class PeriodicTask:
    """Run a callable every *interval* seconds until stopped.

    The callable may be sync or async.  Exceptions are logged and the
    loop keeps going; only :meth:`stop` / :meth:`close` end it.
    """

    def __init__(
        self,
        fn: Callable[[], Any],
        interval: float,
        *,
        name: str = "periodic-task",
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self._fn = fn
        self._interval = interval
        self._name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking; a no-op when already running."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=self._name)

    def stop(self) -> None:
        """Cancel the loop without waiting for it."""
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def close(self) -> None:
        """Cancel the loop and wait until it has finished."""
        task = self._task
        self.stop()
        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _loop(self) -> None:
        me = asyncio.current_task()
        while self._task is me:
            await asyncio.sleep(self._interval)
            if self._task is not me:
                return
            try:
                result = self._fn()
                if asyncio.iscoroutine(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                _logger.warning("Periodic task %s failed", self._name, exc_info=True)
