"""
WhatsApp Gateway Transport Tests

1. Gateway status -> lifecycle event mapping
2. Session against a local gateway stand-in (aiohttp server): pairing,
   readiness, disconnects, probe and send
"""

import asyncio
import base64

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from core.config import TransportConfig
from core.models.lifecycle import (
    AuthChallenge,
    AuthFailure,
    Authenticated,
    Conflict,
    Disconnected,
    ReadySignal,
    TransportFailed,
)
from transport import (
    OutboundMessage,
    ProbeStatus,
    TransportError,
    WhatsAppGatewaySession,
    chat_id,
    events_for_status,
)


# =============================================================================
# Status mapping
# =============================================================================

class TestEventsForStatus:

    def test_unchanged_status(self):
        assert events_for_status("WORKING", "WORKING", True) == []

    def test_restored_session_ready(self):
        assert events_for_status("STARTING", "WORKING", False) == [ReadySignal()]

    def test_ready_right_after_pairing(self):
        assert events_for_status("SCAN_QR_CODE", "WORKING", False) == [Authenticated(), ReadySignal()]

    def test_authenticated(self):
        assert events_for_status("SCAN_QR_CODE", "AUTHENTICATED", False) == [Authenticated()]

    def test_conflict(self):
        assert events_for_status("WORKING", "CONFLICT", True) == [Conflict(state="CONFLICT")]

    def test_failure_before_ready_is_auth_failure(self):
        events = events_for_status("SCAN_QR_CODE", "FAILED", False)
        assert len(events) == 1 and isinstance(events[0], AuthFailure)

    def test_failure_after_ready(self):
        events = events_for_status("WORKING", "FAILED", True)
        assert len(events) == 1 and isinstance(events[0], TransportFailed)

    def test_stopped(self):
        assert isinstance(events_for_status("WORKING", "STOPPED", True)[0], Disconnected)
        assert events_for_status("STARTING", "STOPPED", False) == []

    def test_chat_id(self):
        assert chat_id("5491155550000") == "5491155550000@c.us"


# =============================================================================
# Local gateway
# =============================================================================

class FakeGateway:

    def __init__(self):
        self.statuses = ["STARTING", "SCAN_QR_CODE", "SCAN_QR_CODE", "WORKING"]
        self.status_error = False
        self.start_status = 201
        self.send_status = 201
        self.me = {"id": "5491100000000@c.us", "pushName": "Facturación"}
        self.sent = []
        self.stops = 0
        self.api_keys = set()

    def app(self):
        app = web.Application()
        app.router.add_post("/api/sessions/{name}/start", self.start)
        app.router.add_post("/api/sessions/{name}/stop", self.stop)
        app.router.add_get("/api/sessions/{name}/me", self.get_me)
        app.router.add_get("/api/sessions/{name}", self.status)
        app.router.add_get("/api/{name}/auth/qr", self.qr)
        app.router.add_post("/api/sendText", self.send)
        app.router.add_post("/api/sendFile", self.send)
        return app

    async def start(self, request):
        self.api_keys.add(request.headers.get("X-Api-Key"))
        if self.start_status >= 400:
            return web.json_response({"message": "already started"}, status=self.start_status)
        return web.json_response({"name": request.match_info["name"]}, status=self.start_status)

    async def stop(self, request):
        self.stops += 1
        return web.json_response({})

    async def status(self, request):
        if self.status_error:
            return web.json_response({"message": "internal"}, status=500)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return web.json_response({"name": request.match_info["name"], "status": status})

    async def qr(self, request):
        assert request.query.get("format") == "raw"
        return web.json_response({"value": "2@pairing-code"})

    async def get_me(self, request):
        return web.json_response(self.me)

    async def send(self, request):
        body = await request.json()
        self.sent.append((request.path, body))
        if self.send_status >= 400:
            return web.json_response({"message": "invalid chat"}, status=self.send_status)
        return web.json_response({"id": {"_serialized": f"true_{body['chatId']}_ABC"}}, status=self.send_status)


def run_with_gateway(fake, scenario):
    async def wrapper():
        async with TestServer(fake.app()) as server:
            config = TransportConfig(
                gateway_url=str(server.make_url("")).rstrip("/"),
                session_name="default",
                api_key="key-123",
                poll_interval_seconds=0.01,
                request_timeout_seconds=5,
            )
            session = WhatsAppGatewaySession(config)
            try:
                return await scenario(session)
            finally:
                await session.stop()
    return asyncio.run(wrapper())


class Collector:

    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)

    async def wait_for(self, kind, timeout=2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if any(isinstance(e, kind) for e in self.events):
                return
            await asyncio.sleep(0.01)
        raise AssertionError(f"no {kind.__name__} event, got {self.events}")


class TestGatewaySession:

    def test_pairing_then_ready(self):
        fake = FakeGateway()

        async def scenario(session):
            events = Collector()
            await session.start(events)
            await events.wait_for(ReadySignal)
            return events.events

        events = run_with_gateway(fake, scenario)
        assert events == [AuthChallenge(code="2@pairing-code"), Authenticated(), ReadySignal()]
        assert fake.api_keys == {"key-123"}
        assert fake.stops == 1

    def test_disconnect_after_ready(self):
        fake = FakeGateway()
        fake.statuses = ["WORKING"]

        async def scenario(session):
            events = Collector()
            await session.start(events)
            await events.wait_for(ReadySignal)
            fake.statuses = ["STOPPED"]
            await events.wait_for(Disconnected)
            return events.events

        events = run_with_gateway(fake, scenario)
        assert events == [ReadySignal(), Disconnected(reason="gateway session stopped")]

    def test_already_started_tolerated(self):
        fake = FakeGateway()
        fake.start_status = 422
        fake.statuses = ["WORKING"]

        async def scenario(session):
            events = Collector()
            await session.start(events)
            await events.wait_for(ReadySignal)

        run_with_gateway(fake, scenario)

    def test_start_failure_raises(self):
        fake = FakeGateway()
        fake.start_status = 500

        async def scenario(session):
            await session.start(Collector())

        with pytest.raises(TransportError):
            run_with_gateway(fake, scenario)

    def test_unreachable_status_reports_failure(self):
        fake = FakeGateway()
        fake.status_error = True

        async def scenario(session):
            events = Collector()
            await session.start(events)
            await events.wait_for(TransportFailed)
            return events.events

        events = run_with_gateway(fake, scenario)
        assert len(events) == 1

    def test_probe(self):
        fake = FakeGateway()

        async def scenario(session):
            connected = await session.probe_state()
            fake.me = {}
            unknown = await session.probe_state()
            return connected, unknown

        connected, unknown = run_with_gateway(fake, scenario)
        assert connected.status is ProbeStatus.CONNECTED
        assert connected.identity == "5491100000000@c.us"
        assert unknown.status is ProbeStatus.UNKNOWN

    def test_send_file(self, tmp_path):
        pdf = tmp_path / "Factura_de_deudores_14936.pdf"
        pdf.write_bytes(b"%PDF-1.4 fake")
        fake = FakeGateway()

        async def scenario(session):
            return await session.send("5491155550000", OutboundMessage(text="Factura 14936", attachment=pdf))

        result = run_with_gateway(fake, scenario)
        assert result.accepted
        assert result.message_id == "true_5491155550000@c.us_ABC"
        path, body = fake.sent[0]
        assert path == "/api/sendFile"
        assert body["chatId"] == "5491155550000@c.us"
        assert body["caption"] == "Factura 14936"
        assert body["file"]["filename"] == pdf.name
        assert base64.b64decode(body["file"]["data"]) == b"%PDF-1.4 fake"

    def test_send_text_rejected(self):
        fake = FakeGateway()
        fake.send_status = 400

        async def scenario(session):
            return await session.send("5491155550000", OutboundMessage(text="hola"))

        result = run_with_gateway(fake, scenario)
        assert result.accepted is False
        assert result.reason.startswith("400")
        assert fake.sent[0][0] == "/api/sendText"

    def test_send_server_error_raises(self):
        fake = FakeGateway()
        fake.send_status = 502

        async def scenario(session):
            await session.send("5491155550000", OutboundMessage(text="hola"))

        with pytest.raises(TransportError):
            run_with_gateway(fake, scenario)
