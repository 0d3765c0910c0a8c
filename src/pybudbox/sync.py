"""Reconciliation of the local tank simulation with the remote record.

The simulator is authoritative while running; this module periodically
pushes its counters to the watering endpoint (last push wins) and, on
explicit fetches, bootstraps an empty local tank from the remote record.
Remote failures are logged and retried on the next cycle; they never
reach the simulator.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, Protocol

import aiohttp
from pydantic import ValidationError

from pybudbox._scheduler import PeriodicTask
from pybudbox._transport import request_json
from pybudbox.config import BudboxConfig
from pybudbox.exceptions import BudboxRemoteUnreachableError, BudboxTransportError
from pybudbox.models.resource import FetchOutcome, ResourceState, SyncRecord
from pybudbox.simulator import ResourceSimulator

_logger = logging.getLogger(__name__)


class ResourceStore(Protocol):
    """Narrow interface to wherever the watering record lives."""

    async def fetch(self) -> SyncRecord:
        ...

    async def push(self, payload: Mapping[str, Any]) -> SyncRecord:
        ...


class HttpResourceStore:
    """Watering record behind ``GET``/``POST`` JSON on ``config.resource_url``."""

    def __init__(self, config: BudboxConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session

    async def fetch(self) -> SyncRecord:
        return self._decode(await self._request("GET"))

    async def push(self, payload: Mapping[str, Any]) -> SyncRecord:
        return self._decode(await self._request("POST", dict(payload)))

    def _decode(self, body: dict[str, Any]) -> SyncRecord:
        try:
            return SyncRecord.model_validate(body)
        except ValidationError as exc:
            raise BudboxRemoteUnreachableError(
                f"Invalid watering record: {exc.error_count()} field errors",
                endpoint=self._config.resource_url,
            ) from exc

    async def _request(self, method: str, json_body: Any = None) -> dict[str, Any]:
        url = self._config.resource_url
        try:
            return await request_json(
                self._http,
                method,
                url,
                timeout=self._config.request_timeout,
                json_body=json_body,
            )
        except BudboxTransportError as exc:
            raise BudboxRemoteUnreachableError(
                f"Watering record unavailable: {exc}",
                status_code=exc.status_code,
                endpoint=url,
            ) from exc


class ReconciliationSync:
    """Pushes simulator state to a :class:`ResourceStore` on a fixed interval.

    Until one fetch has succeeded, a cycle fetches instead of pushing
    blindly, so a freshly started client with an empty tank cannot
    overwrite a populated remote record with zeros.
    """

    def __init__(
        self,
        simulator: ResourceSimulator,
        store: ResourceStore,
        *,
        interval: float = 15.0,
    ) -> None:
        self._simulator = simulator
        self._store = store
        self._timer = PeriodicTask(self.run_cycle, interval, name="budbox-sync")
        self._remote_seen = False
        self._closed = False
        self._failures = 0
        self._last_error: BudboxRemoteUnreachableError | None = None
        self._last_record: SyncRecord | None = None
        self._last_synced_at: datetime | None = None

    @property
    def running(self) -> bool:
        return self._timer.running

    @property
    def remote_seen(self) -> bool:
        return self._remote_seen

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    @property
    def last_error(self) -> BudboxRemoteUnreachableError | None:
        return self._last_error

    @property
    def last_record(self) -> SyncRecord | None:
        return self._last_record

    @property
    def last_synced_at(self) -> datetime | None:
        return self._last_synced_at

    def start(self) -> None:
        if self._closed:
            return
        self._timer.start()

    def stop(self) -> None:
        self._timer.stop()

    async def close(self) -> None:
        self._closed = True
        await self._timer.close()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def build_payload(self, state: ResourceState) -> dict[str, Any]:
        payload = state.to_payload()
        payload["pumpActive"] = self._simulator.active
        started_at = self._simulator.last_started_at
        if started_at is not None:
            payload["lastWatering"] = started_at.strftime("%Y-%m-%d %H:%M:%S")
        return payload

    async def push_once(self) -> SyncRecord | None:
        """Push the current local state.  Returns ``None`` on failure."""
        if self._closed:
            return None
        # Captured before the await: ticks during the round-trip are not part of this push.
        payload = self.build_payload(self._simulator.snapshot())
        try:
            record = await self._store.push(payload)
        except BudboxRemoteUnreachableError as exc:
            self._record_failure("push", exc)
            return None
        if self._closed:
            return None
        self._record_success(record)
        _logger.debug(
            "Pushed watering state level=%.3f dispensed=%.3f seconds=%d",
            payload["levelRemaining"],
            payload["totalDispensed"],
            payload["activeSeconds"],
        )
        return record

    async def fetch(self) -> FetchOutcome:
        """Pull the remote record and bootstrap an empty local tank from it."""
        if self._closed:
            return FetchOutcome.UNREACHABLE
        try:
            record = await self._store.fetch()
        except BudboxRemoteUnreachableError as exc:
            self._record_failure("fetch", exc)
            return FetchOutcome.UNREACHABLE
        if self._closed:
            return FetchOutcome.UNREACHABLE

        self._remote_seen = True
        self._record_success(record)

        local = self._simulator.snapshot()
        if local.is_empty and record.level_remaining > 0:
            _logger.info("Adopting remote watering record with %.3f L", record.level_remaining)
            self._simulator.adopt(record.to_state())
            return FetchOutcome.ADOPTED
        return FetchOutcome.KEPT_LOCAL

    async def run_cycle(self) -> None:
        """One timer cycle: fetch until the remote has been seen, then push."""
        if self._closed:
            return
        if not self._remote_seen:
            outcome = await self.fetch()
            if outcome is FetchOutcome.UNREACHABLE:
                return
        await self.push_once()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _record_success(self, record: SyncRecord) -> None:
        if self._failures:
            _logger.info("Watering record reachable again after %d failures", self._failures)
        self._failures = 0
        self._last_error = None
        self._last_record = record
        self._last_synced_at = datetime.now(UTC)

    def _record_failure(self, operation: str, exc: BudboxRemoteUnreachableError) -> None:
        self._failures += 1
        self._last_error = exc
        _logger.warning("Watering %s failed (%d in a row): %s", operation, self._failures, exc)
