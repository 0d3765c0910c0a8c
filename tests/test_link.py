from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

import pytest
import pytest_asyncio

from pybudbox.config import BudboxConfig
from pybudbox.exceptions import (
    BudboxBlockedError,
    BudboxError,
    BudboxProtocolError,
    BudboxSchemaError,
    BudboxTransportError,
    BudboxUnknownVariableError,
)
from pybudbox.link import DeviceLink
from pybudbox.models.connection import ConnectionState
from pybudbox.state.events import LinkEvent, LinkEventKind

HEADER = '"Name","Address","Comment","Type","Unit","Value"'


def _feed(light1: int = 1, *, humidity: bool = True, extra: str = "") -> str:
    lines = [
        HEADER,
        f'"light1","%MX0.0","","BOOL","","{light1}"',
        '"light2","%MX0.1","","BOOL","","0"',
        '"Vent1","%MX0.2","","BOOL","","1"',
        '"Vent2","%MX0.3","","BOOL","","0"',
        '"temp1","%MW1","","REAL","C","24.5"',
    ]
    if humidity:
        lines.append('"humidity1","%MW2","","REAL","%","61"')
    if extra:
        lines.append(extra)
    return "\n".join(lines) + "\n"


@dataclass
class FakeController:
    """Scripted controller: each poll pops the next response (text or exception)."""

    responses: list[str | BaseException] = field(default_factory=list)
    default: str | BaseException = field(default_factory=_feed)
    commands: list[tuple[str, str]] = field(default_factory=list)
    command_error: BaseException | None = None
    polls: int = 0
    gate: asyncio.Event | None = None

    async def fetch_status(self) -> str:
        self.polls += 1
        response = self.responses.pop(0) if self.responses else self.default
        if self.gate is not None:
            gate, self.gate = self.gate, None
            await gate.wait()
        if isinstance(response, BaseException):
            raise response
        return response

    async def send_command(self, wire_name: str, value: str) -> str:
        if self.command_error is not None:
            raise self.command_error
        self.commands.append((wire_name, value))
        return "OK"


@dataclass
class StubbornController:
    """Each fetch waits on its own gate and shrugs off cancellation."""

    feeds: list[str]
    gates: list[asyncio.Event]
    calls: int = 0

    async def fetch_status(self) -> str:
        index = self.calls
        self.calls += 1
        gate = self.gates[index]
        while not gate.is_set():
            try:
                await gate.wait()
            except asyncio.CancelledError:
                continue
        return self.feeds[index]

    async def send_command(self, wire_name: str, value: str) -> str:
        return "OK"


def _stubborn() -> StubbornController:
    return StubbornController(feeds=[_feed(light1=0), _feed(light1=1)], gates=[asyncio.Event(), asyncio.Event()])


class ExplodingParser:
    def parse(self, raw_text: str) -> dict[str, object]:
        raise ValueError("unexpected column layout")


def _config(**overrides: object) -> BudboxConfig:
    # Long timers so nothing fires on its own unless a test asks for it.
    values: dict[str, object] = {
        "poll_interval": 600.0,
        "backoff_base": 600.0,
        "backoff_max": 600.0,
        "confirm_delay": 600.0,
        "max_consecutive_failures": 3,
        "request_timeout": 1.0,
    }
    values.update(overrides)
    return BudboxConfig(**values)  # type: ignore[arg-type]


@pytest.fixture
def events() -> list[LinkEvent]:
    return []


@pytest.fixture
def transport() -> FakeController:
    return FakeController()


@pytest_asyncio.fixture
async def link(transport: FakeController, events: list[LinkEvent]) -> AsyncIterator[DeviceLink]:
    device = DeviceLink(transport, _config(), on_event=events.append)
    yield device
    await device.close()


def _kinds(events: list[LinkEvent]) -> list[LinkEventKind]:
    return [event.kind for event in events]


class TestPolling:
    @pytest.mark.asyncio
    async def test_start_connects_and_schedules_next_poll(
        self, link: DeviceLink, events: list[LinkEvent]
    ) -> None:
        assert link.state is ConnectionState.CONNECTING

        await link.start()

        assert link.state is ConnectionState.CONNECTED
        assert link.snapshot is not None
        assert link.snapshot.value("temp1") == pytest.approx(24.5)
        assert link.retry_scheduled
        assert link.next_poll_delay == pytest.approx(600.0)
        states = [event.message for event in events if event.kind is LinkEventKind.STATE_CHANGED]
        assert states == ["connecting -> connected"]

    @pytest.mark.asyncio
    async def test_unknown_variables_survive_into_snapshot(
        self, link: DeviceLink, transport: FakeController
    ) -> None:
        transport.default = _feed(extra='"co2","","","REAL","","400"')

        snapshot = await link.poll()

        assert snapshot is not None
        assert snapshot.value("co2") == pytest.approx(400.0)

    @pytest.mark.asyncio
    async def test_missing_required_variable_is_an_error(
        self, link: DeviceLink, transport: FakeController
    ) -> None:
        transport.default = _feed(humidity=False)

        await link.start()

        assert link.state is ConnectionState.ERROR
        assert isinstance(link.last_error, BudboxSchemaError)
        assert link.last_error.missing == ("humidity1",)
        assert link.snapshot is None

    @pytest.mark.asyncio
    async def test_failure_after_success_disconnects_and_keeps_snapshot(
        self, link: DeviceLink, transport: FakeController, events: list[LinkEvent]
    ) -> None:
        await link.start()
        previous = link.snapshot
        transport.responses.append(BudboxTransportError("connection refused"))

        assert await link.poll() is None

        assert link.state is ConnectionState.DISCONNECTED
        assert link.snapshot is previous
        assert link.consecutive_failures == 1
        assert link.next_poll_delay == pytest.approx(600.0)
        assert LinkEventKind.RETRY_SCHEDULED in _kinds(events)

    @pytest.mark.asyncio
    async def test_success_resets_failures(self, link: DeviceLink, transport: FakeController) -> None:
        transport.responses.extend([BudboxTransportError("down"), BudboxTransportError("down")])
        await link.start()
        await link.poll()
        assert link.consecutive_failures == 2

        await link.poll()

        assert link.consecutive_failures == 0
        assert link.last_error is None
        assert link.state is ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_retries_stop_after_max_failures(
        self, link: DeviceLink, transport: FakeController, events: list[LinkEvent]
    ) -> None:
        transport.default = BudboxTransportError("unreachable")

        await link.start()
        await link.poll()
        await link.poll()

        assert link.consecutive_failures == 3
        assert link.retries_exhausted
        assert link.state is ConnectionState.ERROR
        assert not link.retry_scheduled
        assert _kinds(events).count(LinkEventKind.RETRIES_EXHAUSTED) == 1

    @pytest.mark.asyncio
    async def test_reconnect_after_exhaustion(self, link: DeviceLink, transport: FakeController) -> None:
        transport.default = BudboxTransportError("unreachable")
        await link.start()
        await link.poll()
        await link.poll()
        assert link.retries_exhausted

        transport.default = _feed()
        snapshot = await link.reconnect()

        assert snapshot is not None
        assert not link.retries_exhausted
        assert link.consecutive_failures == 0
        assert link.state is ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_blocked_does_not_retry(self, link: DeviceLink, transport: FakeController) -> None:
        transport.default = BudboxBlockedError("insecure controller", endpoint="http://plc")

        await link.start()

        assert link.state is ConnectionState.BLOCKED
        assert not link.retry_scheduled

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self, transport: FakeController) -> None:
        transport.gate = asyncio.Event()
        device = DeviceLink(transport, _config(request_timeout=0.02))
        try:
            await device.start()
        finally:
            await device.close()

        assert device.consecutive_failures == 1
        assert isinstance(device.last_error, BudboxTransportError)
        assert "timed out" in str(device.last_error)

    @pytest.mark.asyncio
    async def test_newer_poll_supersedes_in_flight_poll(
        self, link: DeviceLink, transport: FakeController
    ) -> None:
        transport.gate = asyncio.Event()
        transport.responses.extend([_feed(light1=0), _feed(light1=1)])

        slow = asyncio.create_task(link.poll())
        while transport.polls == 0:
            await asyncio.sleep(0)
        assert link.is_loading

        fresh = await link.poll()
        stale = await slow

        assert stale is None
        assert fresh is not None
        assert link.snapshot is fresh
        assert fresh.value("light1") == 1
        assert link.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_late_result_after_reconnect_is_discarded(self) -> None:
        stubborn = _stubborn()
        stubborn.gates[1].set()
        device = DeviceLink(stubborn, _config())
        try:
            slow = asyncio.create_task(device.poll())
            while stubborn.calls == 0:
                await asyncio.sleep(0)

            fresh = await device.reconnect()
            stubborn.gates[0].set()

            assert await slow is None
            assert fresh is not None
            assert device.snapshot is fresh
            assert device.snapshot.value("light1") == 1
            assert device.state is ConnectionState.CONNECTED
            assert device.consecutive_failures == 0
        finally:
            await device.close()

    @pytest.mark.asyncio
    async def test_stale_result_before_reconnect_finishes_is_discarded(self) -> None:
        stubborn = _stubborn()
        device = DeviceLink(stubborn, _config())
        try:
            slow = asyncio.create_task(device.poll())
            while stubborn.calls == 0:
                await asyncio.sleep(0)
            pending = asyncio.create_task(device.reconnect())
            while stubborn.calls < 2:
                await asyncio.sleep(0)

            stubborn.gates[0].set()

            assert await slow is None
            assert device.snapshot is None
            assert device.state is ConnectionState.CONNECTING

            stubborn.gates[1].set()
            fresh = await pending

            assert fresh is not None
            assert device.snapshot is fresh
            assert fresh.value("light1") == 1
            assert device.state is ConnectionState.CONNECTED
        finally:
            await device.close()

    @pytest.mark.asyncio
    async def test_unexpected_transport_exception_becomes_failure(
        self, link: DeviceLink, transport: FakeController
    ) -> None:
        transport.default = UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")

        await link.start()

        assert link.state is ConnectionState.ERROR
        assert link.consecutive_failures == 1
        assert link.retry_scheduled
        assert isinstance(link.last_error, BudboxTransportError)
        assert isinstance(link.last_error.__cause__, UnicodeDecodeError)

    @pytest.mark.asyncio
    async def test_unexpected_parser_exception_becomes_protocol_failure(
        self, transport: FakeController, events: list[LinkEvent]
    ) -> None:
        parser = ExplodingParser()
        device = DeviceLink(transport, _config(), parser=parser, on_event=events.append)  # type: ignore[arg-type]
        try:
            await device.start()
        finally:
            await device.close()

        assert device.state is ConnectionState.ERROR
        assert device.consecutive_failures == 1
        assert isinstance(device.last_error, BudboxProtocolError)
        assert isinstance(device.last_error.__cause__, ValueError)
        assert LinkEventKind.POLL_FAILED in _kinds(events)

    @pytest.mark.asyncio
    async def test_poll_without_start_does_not_schedule(self, link: DeviceLink) -> None:
        await link.poll()

        assert link.state is ConnectionState.CONNECTED
        assert not link.retry_scheduled

    @pytest.mark.asyncio
    async def test_close_stops_everything(self, link: DeviceLink, events: list[LinkEvent]) -> None:
        await link.start()
        await link.close()
        events.clear()

        assert link.closed
        assert not link.retry_scheduled
        assert await link.poll() is None
        assert events == []
        with pytest.raises(BudboxError):
            await link.reconnect()

    @pytest.mark.asyncio
    async def test_callback_errors_are_contained(self, transport: FakeController) -> None:
        def _explode(_event: LinkEvent) -> None:
            raise RuntimeError("listener bug")

        device = DeviceLink(transport, _config(), on_event=_explode)
        try:
            await device.start()
        finally:
            await device.close()

        assert device.state is ConnectionState.CONNECTED


class TestWrites:
    @pytest.mark.asyncio
    async def test_write_maps_logical_name_and_formats_bool(
        self, link: DeviceLink, transport: FakeController, events: list[LinkEvent]
    ) -> None:
        ack = await link.write_variable("vent1", True)

        assert transport.commands == [("Vent1", "1")]
        assert ack.wire_name == "Vent1"
        assert ack.value == "1"
        assert ack.response_text == "OK"
        assert LinkEventKind.WRITE_SUCCEEDED in _kinds(events)

    @pytest.mark.asyncio
    async def test_integer_floats_are_sent_without_fraction(
        self, link: DeviceLink, transport: FakeController
    ) -> None:
        await link.write_variable("light2", 0.0)
        await link.write_variable("light1", 2.5)

        assert transport.commands == [("light2", "0"), ("light1", "2.5")]

    @pytest.mark.asyncio
    async def test_unknown_name_is_rejected_without_request(
        self, link: DeviceLink, transport: FakeController
    ) -> None:
        with pytest.raises(BudboxUnknownVariableError) as excinfo:
            await link.write_variable("pump", True)

        assert transport.commands == []
        assert "Invalid variable name: pump" in str(excinfo.value)
        assert excinfo.value.valid == ("light1", "light2", "vent1", "vent2")

    @pytest.mark.asyncio
    async def test_write_failure_raises_and_keeps_polling_state(
        self, link: DeviceLink, transport: FakeController, events: list[LinkEvent]
    ) -> None:
        await link.start()
        transport.command_error = BudboxTransportError("HTTP 500", status_code=500)

        with pytest.raises(BudboxTransportError):
            await link.set_output("light1", False)

        assert link.state is ConnectionState.CONNECTED
        failure = [event for event in events if event.kind is LinkEventKind.WRITE_FAILED]
        assert len(failure) == 1
        assert "Could not set light1 to 0" in failure[0].message

    @pytest.mark.asyncio
    async def test_successful_write_triggers_confirming_poll(self, transport: FakeController) -> None:
        device = DeviceLink(transport, _config(confirm_delay=0.01))
        try:
            await device.write_variable("light1", True)
            await asyncio.sleep(0.05)
        finally:
            await device.close()

        assert transport.polls == 1
        assert device.snapshot is not None

    @pytest.mark.asyncio
    async def test_toggle_inverts_current_value(self, link: DeviceLink, transport: FakeController) -> None:
        transport.default = _feed(light1=1)
        await link.start()

        await link.toggle("light1")
        await link.toggle("vent2")

        assert transport.commands == [("light1", "0"), ("Vent2", "1")]

    @pytest.mark.asyncio
    async def test_toggle_without_snapshot_turns_on(self, link: DeviceLink, transport: FakeController) -> None:
        await link.toggle("light2")

        assert transport.commands == [("light2", "1")]
