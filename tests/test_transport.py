from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from pybudbox._transport import HttpControllerTransport, ensure_reachable, request_json, request_text
from pybudbox.config import BudboxConfig
from pybudbox.exceptions import BudboxBlockedError, BudboxRemoteUnreachableError, BudboxTransportError
from pybudbox.feed import parse_status_feed
from pybudbox.sync import HttpResourceStore

FEED = '"Name","Address","Comment","Type","Unit","Value"\n"light1","%MX0.0","","BOOL","","1"\n'


@dataclass
class FakeRig:
    """In-process controller and watering server."""

    status: int = 200
    watering: Any = field(default_factory=lambda: {"id": 1, "waterTankLevelLitres": 7.5})
    forms: list[dict[str, str]] = field(default_factory=list)
    posted: list[dict[str, Any]] = field(default_factory=list)
    headers: list[dict[str, str]] = field(default_factory=list)
    feed_bytes: bytes | None = None
    watering_bytes: bytes | None = None

    async def getvar(self, request: web.Request) -> web.Response:
        self.headers.append(dict(request.headers))
        if self.feed_bytes is not None:
            return web.Response(body=self.feed_bytes, status=self.status, content_type="text/csv", charset="utf-8")
        return web.Response(text=FEED, status=self.status)

    async def setvar(self, request: web.Request) -> web.Response:
        form = await request.post()
        self.forms.append({key: str(value) for key, value in form.items()})
        return web.Response(text="OK\n", status=self.status)

    async def get_watering(self, _request: web.Request) -> web.Response:
        if self.watering_bytes is not None:
            return web.Response(
                body=self.watering_bytes, status=self.status, content_type="application/json", charset="utf-8"
            )
        return web.json_response(self.watering, status=self.status)

    async def post_watering(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.posted.append(body)
        return web.json_response({"id": 1, **body}, status=self.status)

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/getvar.csv", self.getvar)
        app.router.add_post("/setvar.csv", self.setvar)
        app.router.add_get("/api/watering", self.get_watering)
        app.router.add_post("/api/watering", self.post_watering)
        return app


@dataclass
class RigHarness:
    rig: FakeRig
    config: BudboxConfig
    http: aiohttp.ClientSession


@pytest_asyncio.fixture
async def harness() -> AsyncIterator[RigHarness]:
    rig = FakeRig()
    async with test_utils.TestServer(rig.app()) as server:
        base = f"http://{server.host}:{server.port}"
        config = BudboxConfig(controller_url=base, resource_url=f"{base}/api/watering", request_timeout=2.0)
        async with aiohttp.ClientSession() as http:
            yield RigHarness(rig=rig, config=config, http=http)


class TestEnsureReachable:
    def test_insecure_scheme_blocked_in_secure_context(self) -> None:
        with pytest.raises(BudboxBlockedError) as excinfo:
            ensure_reachable("http://192.168.0.213/getvar.csv", secure_context=True)
        assert excinfo.value.endpoint == "http://192.168.0.213/getvar.csv"

    def test_secure_scheme_allowed(self) -> None:
        ensure_reachable("https://plc.example/getvar.csv", secure_context=True)

    def test_anything_goes_outside_secure_context(self) -> None:
        ensure_reachable("http://192.168.0.213/getvar.csv", secure_context=False)


class TestControllerTransport:
    @pytest.mark.asyncio
    async def test_fetch_status_returns_feed_without_cache(self, harness: RigHarness) -> None:
        transport = HttpControllerTransport(harness.config, harness.http)

        text = await transport.fetch_status()

        assert text == FEED
        assert harness.rig.headers[-1]["Cache-Control"] == "no-cache"
        assert harness.rig.headers[-1]["Pragma"] == "no-cache"

    @pytest.mark.asyncio
    async def test_send_command_posts_form(self, harness: RigHarness) -> None:
        transport = HttpControllerTransport(harness.config, harness.http)

        reply = await transport.send_command("Vent1", "1")

        assert reply == "OK"
        assert harness.rig.forms == [{"Vent1": "1"}]

    @pytest.mark.asyncio
    async def test_non_2xx_is_transport_error(self, harness: RigHarness) -> None:
        harness.rig.status = 503
        transport = HttpControllerTransport(harness.config, harness.http)

        with pytest.raises(BudboxTransportError) as excinfo:
            await transport.fetch_status()

        assert excinfo.value.status_code == 503
        assert excinfo.value.endpoint == harness.config.status_url

    @pytest.mark.asyncio
    async def test_malformed_bytes_only_spoil_their_own_line(self, harness: RigHarness) -> None:
        harness.rig.feed_bytes = FEED.encode() + b'"light2","%MX0.1","Pumpe \xff\xfe","BOOL","","0"\n'
        transport = HttpControllerTransport(harness.config, harness.http)

        text = await transport.fetch_status()

        assert "\ufffd" in text
        variables = parse_status_feed(text)
        assert variables["light1"].value == 1
        assert variables["light2"].value == 0

    @pytest.mark.asyncio
    async def test_blocked_before_any_request(self, harness: RigHarness) -> None:
        config = BudboxConfig(controller_url=harness.config.controller_url, secure_context=True)
        transport = HttpControllerTransport(config, harness.http)

        with pytest.raises(BudboxBlockedError):
            await transport.send_command("light1", "1")

        assert harness.rig.forms == []

    @pytest.mark.asyncio
    async def test_connection_refused_is_transport_error(self) -> None:
        config = BudboxConfig(controller_url="http://127.0.0.1:9", request_timeout=2.0)
        async with aiohttp.ClientSession() as http:
            with pytest.raises(BudboxTransportError):
                await HttpControllerTransport(config, http).fetch_status()


class TestResourceStore:
    @pytest.mark.asyncio
    async def test_fetch_decodes_record(self, harness: RigHarness) -> None:
        store = HttpResourceStore(harness.config, harness.http)

        record = await store.fetch()

        assert record.level_remaining == pytest.approx(7.5)
        assert record.raw["id"] == 1

    @pytest.mark.asyncio
    async def test_push_sends_json(self, harness: RigHarness) -> None:
        store = HttpResourceStore(harness.config, harness.http)

        record = await store.push({"levelRemaining": 3.0, "totalDispensed": 7.0, "activeSeconds": 1050})

        assert harness.rig.posted == [{"levelRemaining": 3.0, "totalDispensed": 7.0, "activeSeconds": 1050}]
        assert record.active_seconds == 1050

    @pytest.mark.asyncio
    async def test_server_error_is_unreachable(self, harness: RigHarness) -> None:
        harness.rig.status = 500
        store = HttpResourceStore(harness.config, harness.http)

        with pytest.raises(BudboxRemoteUnreachableError) as excinfo:
            await store.fetch()

        assert excinfo.value.status_code == 500

    @pytest.mark.asyncio
    async def test_non_object_body_is_unreachable(self, harness: RigHarness) -> None:
        harness.rig.watering = [1, 2, 3]
        store = HttpResourceStore(harness.config, harness.http)

        with pytest.raises(BudboxRemoteUnreachableError):
            await store.fetch()

    @pytest.mark.asyncio
    async def test_request_json_rejects_invalid_json(self, harness: RigHarness) -> None:
        with pytest.raises(BudboxTransportError, match="Invalid JSON"):
            await request_json(harness.http, "GET", harness.config.status_url, timeout=2.0)

    @pytest.mark.asyncio
    async def test_undecodable_body_is_unreachable(self, harness: RigHarness) -> None:
        harness.rig.watering_bytes = b'{"id": 1, "note": "\xff\xfe"}'
        store = HttpResourceStore(harness.config, harness.http)

        with pytest.raises(BudboxRemoteUnreachableError):
            await store.fetch()

    @pytest.mark.asyncio
    async def test_request_text_rejects_undecodable_body(self, harness: RigHarness) -> None:
        harness.rig.watering_bytes = b"\xff\xfe"

        with pytest.raises(BudboxTransportError, match="Undecodable") as excinfo:
            await request_text(harness.http, "GET", harness.config.resource_url, timeout=2.0)

        assert isinstance(excinfo.value.__cause__, UnicodeDecodeError)
