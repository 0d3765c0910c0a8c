"""High-level async client for one BudBox grow rig."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import aiohttp

from pybudbox._transport import ControllerTransport, HttpControllerTransport
from pybudbox.config import BudboxConfig
from pybudbox.exceptions import BudboxError
from pybudbox.link import DeviceLink
from pybudbox.models.command_responses import CommandAck
from pybudbox.models.connection import ConnectionState
from pybudbox.models.resource import FetchOutcome, ResourceState, StartResult
from pybudbox.models.variables import DeviceSnapshot
from pybudbox.simulator import FlowRate, ResourceSimulator
from pybudbox.state.events import LinkEvent
from pybudbox.sync import HttpResourceStore, ReconciliationSync, ResourceStore

_logger = logging.getLogger(__name__)


class BudboxClient:
    """Async client for one grow rig: controller link, tank simulator and sync.

    Usage::

        async with BudboxClient(config) as client:
            await client.start()
            await client.set_output("light1", True)
            await client.start_watering()

    Construct one client per rig and pass it to whatever needs it; the
    library keeps no global state.
    """

    def __init__(
        self,
        config: BudboxConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: ControllerTransport | None = None,
        resource_store: ResourceStore | None = None,
        initial_resource: ResourceState | None = None,
        autorun: bool = True,
        on_link_event: Callable[[LinkEvent], None] | None = None,
        on_resource_change: Callable[[ResourceState], None] | None = None,
    ) -> None:
        self._config = config if config is not None else BudboxConfig()
        self._external_session = session is not None
        self._http_session = session
        self._transport = transport
        self._resource_store = resource_store
        self._on_link_event = on_link_event
        self._link: DeviceLink | None = None
        self._sync: ReconciliationSync | None = None
        self._closed = False
        self._simulator = ResourceSimulator.from_flow(
            FlowRate(self._config.flow_quantity, self._config.flow_period),
            initial=initial_resource,
            tick_interval=self._config.tick_interval,
            autorun=autorun,
            on_change=on_resource_change,
        )

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> BudboxClient:
        if self._http_session is None and (self._transport is None or self._resource_store is None):
            self._http_session = aiohttp.ClientSession()
        if self._transport is None:
            assert self._http_session is not None  # noqa: S101
            self._transport = HttpControllerTransport(self._config, self._http_session)
        if self._resource_store is None:
            assert self._http_session is not None  # noqa: S101
            self._resource_store = HttpResourceStore(self._config, self._http_session)

        self._link = DeviceLink(self._transport, self._config, on_event=self._on_link_event)
        self._sync = ReconciliationSync(
            self._simulator,
            self._resource_store,
            interval=self._config.sync_interval,
        )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def start(self) -> None:
        """Start polling the controller and syncing the tank.

        The initial watering fetch is best effort: if the remote record
        is unreachable the client runs in local-only mode and the sync
        timer keeps trying.
        """
        link = self._require_link()
        sync = self._require_sync()
        await link.start()
        outcome = await sync.fetch()
        if outcome is FetchOutcome.UNREACHABLE:
            _logger.warning("Watering record unreachable at startup; continuing with local state")
        sync.start()

    async def close(self) -> None:
        self._closed = True
        if self._link is not None:
            await self._link.close()
            self._link = None
        if self._sync is not None:
            await self._sync.close()
            self._sync = None
        await self._simulator.close()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> BudboxConfig:
        return self._config

    @property
    def link(self) -> DeviceLink:
        return self._require_link()

    @property
    def sync(self) -> ReconciliationSync:
        return self._require_sync()

    @property
    def simulator(self) -> ResourceSimulator:
        return self._simulator

    @property
    def connection_state(self) -> ConnectionState:
        """Link state; ``CONNECTING`` before the first poll and ``DISCONNECTED`` once closed."""
        if self._link is not None:
            return self._link.state
        return ConnectionState.DISCONNECTED if self._closed else ConnectionState.CONNECTING

    @property
    def snapshot(self) -> DeviceSnapshot | None:
        return self._link.snapshot if self._link is not None else None

    @property
    def resource(self) -> ResourceState:
        return self._simulator.snapshot()

    def _require_link(self) -> DeviceLink:
        if self._link is None:
            raise BudboxError("Client not initialized. Use 'async with BudboxClient(...) as client:'")
        return self._link

    def _require_sync(self) -> ReconciliationSync:
        if self._sync is None:
            raise BudboxError("Client not initialized. Use 'async with BudboxClient(...) as client:'")
        return self._sync

    # ------------------------------------------------------------------
    # Controller
    # ------------------------------------------------------------------

    async def refresh(self) -> DeviceSnapshot | None:
        return await self._require_link().poll()

    async def reconnect(self) -> DeviceSnapshot | None:
        return await self._require_link().reconnect()

    async def write_variable(self, name: str, value: bool | int | float) -> CommandAck:
        return await self._require_link().write_variable(name, value)

    async def set_output(self, name: str, on: bool) -> CommandAck:
        return await self._require_link().set_output(name, on)

    async def toggle_output(self, name: str) -> CommandAck:
        return await self._require_link().toggle(name)

    # ------------------------------------------------------------------
    # Watering
    # ------------------------------------------------------------------

    async def refresh_watering(self) -> FetchOutcome:
        return await self._require_sync().fetch()

    async def start_watering(self) -> StartResult:
        """Open the valve.

        An empty local tank is first bootstrapped from the remote record;
        if that fetch fails the start is attempted on local state anyway.
        """
        sync = self._require_sync()
        if self._simulator.snapshot().is_empty and not self._simulator.active:
            outcome = await sync.fetch()
            if outcome is FetchOutcome.UNREACHABLE:
                _logger.info("Watering record unreachable; starting from local state")
        result = self._simulator.start()
        if result.started:
            await sync.push_once()
        return result

    async def stop_watering(self) -> bool:
        changed = self._simulator.stop()
        if changed:
            await self._require_sync().push_once()
        return changed

    async def toggle_watering(self) -> bool:
        """Start or stop watering; returns whether watering is active afterwards."""
        if self._simulator.active:
            await self.stop_watering()
        else:
            await self.start_watering()
        return self._simulator.active

    async def refill(self, amount: float | None = None) -> ResourceState:
        """Add water to the tank (default ``config.refill_amount``) and push it."""
        state = self._simulator.refill(self._config.refill_amount if amount is None else amount)
        await self._require_sync().push_once()
        return state

    async def set_tank_level(self, litres: float) -> ResourceState:
        state = self._simulator.set_level(litres)
        await self._require_sync().push_once()
        return state
