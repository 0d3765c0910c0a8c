"""Polling connection to one controller.

A :class:`DeviceLink` owns the connection state of a single controller:
it polls the status feed on a timer, backs off exponentially after
failures, stops retrying after too many consecutive failures, and issues
actuator writes followed by a delayed confirming poll.

Poll outcomes never raise; they are reported through :attr:`state` and
the ``on_event`` callback.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable

from pybudbox._scheduler import DelayedCall
from pybudbox._transport import ControllerTransport
from pybudbox.config import BudboxConfig
from pybudbox.exceptions import (
    BudboxBlockedError,
    BudboxError,
    BudboxProtocolError,
    BudboxSchemaError,
    BudboxTransportError,
    BudboxUnknownVariableError,
)
from pybudbox.feed import StatusFeedParser
from pybudbox.models.command_responses import CommandAck
from pybudbox.models.connection import ConnectionState
from pybudbox.models.variables import DeviceSnapshot
from pybudbox.state.events import LinkEvent, LinkEventKind
from pybudbox.state.policy import backoff_delay, retries_exhausted
from pybudbox.state.store import SnapshotStore

_logger = logging.getLogger(__name__)


def _format_value(value: bool | int | float) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class DeviceLink:
    """Connection to one controller.

    A new link reports ``CONNECTING`` until its first poll completes.

    Usage::

        link = DeviceLink(transport, config, on_event=print)
        await link.start()
        await link.write_variable("light1", True)
        ...
        await link.close()
    """

    def __init__(
        self,
        transport: ControllerTransport,
        config: BudboxConfig,
        *,
        store: SnapshotStore | None = None,
        parser: StatusFeedParser | None = None,
        on_event: Callable[[LinkEvent], None] | None = None,
    ) -> None:
        self._transport = transport
        self._config = config
        self._store = store if store is not None else SnapshotStore(required=config.required_variables)
        self._parser = parser if parser is not None else StatusFeedParser()
        self._on_event = on_event

        self._state = ConnectionState.CONNECTING
        self._failures = 0
        self._exhausted = False
        self._last_error: BudboxError | None = None
        self._generation = 0
        self._inflight: asyncio.Task[str] | None = None
        self._started = False
        self._closed = False

        self._next_poll = DelayedCall(self._scheduled_poll, name="budbox-link-poll")
        self._confirm_poll = DelayedCall(self._confirming_poll, name="budbox-link-confirm")

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def snapshot(self) -> DeviceSnapshot | None:
        return self._store.current

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    @property
    def retries_exhausted(self) -> bool:
        """``True`` once automatic retry has given up (until :meth:`reconnect`)."""
        return self._exhausted

    @property
    def last_error(self) -> BudboxError | None:
        return self._last_error

    @property
    def is_loading(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    @property
    def retry_scheduled(self) -> bool:
        return self._next_poll.pending

    @property
    def next_poll_delay(self) -> float | None:
        return self._next_poll.delay

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Begin polling: ``CONNECTING`` then an immediate poll."""
        self._require_open()
        if self._started:
            return
        self._started = True
        self._set_state(ConnectionState.CONNECTING)
        await self.poll()

    async def reconnect(self) -> DeviceSnapshot | None:
        """Supersede any in-flight poll, reset backoff, and poll now."""
        self._require_open()
        _logger.info("Manual reconnect requested")
        self._started = True
        self._next_poll.cancel()
        self._cancel_inflight()
        self._generation += 1
        self._failures = 0
        self._exhausted = False
        self._last_error = None
        self._set_state(ConnectionState.CONNECTING)
        return await self.poll()

    async def close(self) -> None:
        """Cancel timers and in-flight requests; nothing fires afterwards."""
        if self._closed:
            return
        self._closed = True
        self._next_poll.cancel()
        self._confirm_poll.cancel()
        task = self._cancel_inflight()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task
        _logger.debug("Device link closed")

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def poll(self) -> DeviceSnapshot | None:
        """Fetch and decode the status feed once.

        A newer call cancels this one; a superseded poll returns ``None``
        and leaves all state untouched.  Returns the new snapshot on
        success and ``None`` on failure.
        """
        if self._closed:
            return None
        self._cancel_inflight()
        self._generation += 1
        generation = self._generation

        task: asyncio.Task[str] = asyncio.get_running_loop().create_task(self._fetch(), name="budbox-link-fetch")
        self._inflight = task

        try:
            text = await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            _logger.debug("Poll generation=%d superseded", generation)
            return None
        except BudboxError as exc:
            if self._is_superseded(generation):
                return None
            self._handle_failure(exc)
            return None
        except TimeoutError:
            if self._is_superseded(generation):
                return None
            self._handle_failure(
                BudboxTransportError(
                    f"Status poll timed out after {self._config.request_timeout}s",
                    endpoint=self._config.status_url,
                )
            )
            return None
        except Exception as exc:
            if self._is_superseded(generation):
                return None
            _logger.warning("Status poll failed unexpectedly", exc_info=True)
            error = BudboxTransportError(f"Status poll failed: {exc!r}", endpoint=self._config.status_url)
            error.__cause__ = exc
            self._handle_failure(error)
            return None
        finally:
            if self._inflight is task:
                self._inflight = None

        if self._is_superseded(generation):
            _logger.debug("Discarding late result of poll generation=%d", generation)
            return None

        try:
            snapshot = self._store.build(self._parser.parse(text), generation)
        except BudboxError as exc:
            self._handle_failure(exc)
            return None
        except Exception as exc:
            _logger.warning("Status feed could not be decoded", exc_info=True)
            protocol_error = BudboxProtocolError(f"Status feed could not be decoded: {exc!r}")
            protocol_error.__cause__ = exc
            self._handle_failure(protocol_error)
            return None

        if not self._store.commit(snapshot):
            return None
        self._handle_success(snapshot)
        return snapshot

    async def _fetch(self) -> str:
        return await asyncio.wait_for(self._transport.fetch_status(), timeout=self._config.request_timeout)

    def _is_superseded(self, generation: int) -> bool:
        return self._closed or generation != self._generation

    def _handle_success(self, snapshot: DeviceSnapshot) -> None:
        if self._failures:
            _logger.info("Controller reachable again after %d failed polls", self._failures)
        self._failures = 0
        self._exhausted = False
        self._last_error = None
        self._set_state(ConnectionState.CONNECTED)
        self._emit(LinkEventKind.SNAPSHOT, message=f"{len(snapshot)} variables")
        self._schedule_next(self._config.poll_interval)

    def _handle_failure(self, exc: BudboxError) -> None:
        self._failures += 1
        self._last_error = exc
        self._emit(LinkEventKind.POLL_FAILED, message=str(exc), error_type=type(exc).__name__)

        if isinstance(exc, BudboxBlockedError):
            _logger.warning("Controller blocked, manual reconnect required: %s", exc)
            self._next_poll.cancel()
            self._set_state(ConnectionState.BLOCKED)
            return

        if retries_exhausted(self._failures, max_failures=self._config.max_consecutive_failures):
            _logger.warning(
                "Giving up after %d consecutive failed polls: %s",
                self._failures,
                exc,
            )
            self._next_poll.cancel()
            self._exhausted = True
            self._set_state(ConnectionState.ERROR)
            self._emit(LinkEventKind.RETRIES_EXHAUSTED, message=str(exc), error_type=type(exc).__name__)
            return

        _logger.debug("Poll failed (%d in a row): %s", self._failures, exc)
        if self._state.is_online and not isinstance(exc, BudboxSchemaError):
            self._set_state(ConnectionState.DISCONNECTED)
        else:
            self._set_state(ConnectionState.ERROR)

        delay = backoff_delay(self._failures, base=self._config.backoff_base, maximum=self._config.backoff_max)
        self._schedule_next(delay)
        self._emit(LinkEventKind.RETRY_SCHEDULED, message=str(exc), retry_in=delay)

    def _schedule_next(self, delay: float) -> None:
        if self._closed or not self._started:
            return
        self._next_poll.arm(delay)

    async def _scheduled_poll(self) -> None:
        if self._closed:
            return
        if self._state is not ConnectionState.CONNECTED:
            self._set_state(ConnectionState.CONNECTING)
        await self.poll()

    async def _confirming_poll(self) -> None:
        if self._closed:
            return
        await self.poll()

    def _cancel_inflight(self) -> asyncio.Task[str] | None:
        task = self._inflight
        self._inflight = None
        if task is not None and not task.done():
            task.cancel()
        return task

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def wire_name(self, name: str) -> str:
        """Controller wire name for a writable logical name.

        Raises
        ------
        BudboxUnknownVariableError
            If *name* is not in ``config.writable_variables``.
        """
        writable = self._config.writable_variables
        wire = writable.get(name)
        if wire is None:
            raise BudboxUnknownVariableError(
                f"Invalid variable name: {name}. Valid names: {', '.join(writable)}",
                name=name,
                valid=writable,
            )
        return wire

    async def write_variable(self, name: str, value: bool | int | float) -> CommandAck:
        """Send one actuator command, then schedule a confirming poll.

        Raises
        ------
        BudboxUnknownVariableError
            For names outside the writable whitelist (no request is made).
        BudboxTransportError
            If the command request fails.  Polling is unaffected.
        """
        self._require_open()
        wire = self.wire_name(name)
        text_value = _format_value(value)
        _logger.info("Writing %s=%s to controller", wire, text_value)

        try:
            response_text = await asyncio.wait_for(
                self._transport.send_command(wire, text_value),
                timeout=self._config.request_timeout,
            )
        except TimeoutError as exc:
            error = BudboxTransportError(
                f"Writing {wire}={text_value} timed out after {self._config.request_timeout}s",
                endpoint=self._config.command_url,
            )
            self._report_write_failure(wire, text_value, error)
            raise error from exc
        except BudboxTransportError as exc:
            self._report_write_failure(wire, text_value, exc)
            raise

        if self._closed:
            return CommandAck(name=name, wire_name=wire, value=text_value, response_text=response_text)

        _logger.debug("Wrote %s=%s, controller replied %r", wire, text_value, response_text)
        self._emit(LinkEventKind.WRITE_SUCCEEDED, message=f"{wire}={text_value}")
        self._confirm_poll.arm(self._config.confirm_delay)
        return CommandAck(name=name, wire_name=wire, value=text_value, response_text=response_text)

    async def set_output(self, name: str, on: bool) -> CommandAck:
        return await self.write_variable(name, bool(on))

    async def toggle(self, name: str) -> CommandAck:
        """Invert a boolean actuator based on the current snapshot."""
        wire = self.wire_name(name)
        snapshot = self.snapshot
        current = bool(snapshot.value(wire, 0)) if snapshot is not None else False
        return await self.write_variable(name, not current)

    def _report_write_failure(self, wire: str, value: str, exc: BudboxError) -> None:
        _logger.warning("Failed to write %s=%s: %s", wire, value, exc)
        if self._closed:
            return
        self._emit(
            LinkEventKind.WRITE_FAILED,
            message=f"Could not set {wire} to {value}: {exc}",
            error_type=type(exc).__name__,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_open(self) -> None:
        if self._closed:
            raise BudboxError("Device link is closed")

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        previous = self._state
        self._state = state
        _logger.info("Connection state %s -> %s", previous, state)
        self._emit(LinkEventKind.STATE_CHANGED, message=f"{previous} -> {state}")

    def _emit(
        self,
        kind: LinkEventKind,
        *,
        message: str = "",
        error_type: str | None = None,
        retry_in: float | None = None,
    ) -> None:
        if self._on_event is None or self._closed:
            return
        event = LinkEvent(
            kind=kind,
            state=self._state,
            message=message,
            error_type=error_type,
            retry_in=retry_in,
            failures=self._failures,
        )
        try:
            self._on_event(event)
        except Exception:
            _logger.debug("on_event callback failed", exc_info=True)
