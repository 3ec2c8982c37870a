"""
Dashboard API Tests

Exercises the health and status endpoints with FastAPI's TestClient, both
without a service and with a DeliveryService wired to in-memory fakes.
"""

import time

import pytest
from fastapi.testclient import TestClient

from api.server import create_app
from connectors.erp_base import ConnectorSettings, DocumentSource
from core.config import DeliveryConfig, ServiceConfig, SessionConfig
from core.models.lifecycle import Authenticated, ReadySignal
from transport.base import ProbeResult, ProbeStatus, SendResult, TransportSession
from workers.service import DeliveryService


class ReadyTransport(TransportSession):

    async def start(self, emit):
        await emit(Authenticated())
        await emit(ReadySignal())

    async def probe_state(self):
        return ProbeResult(status=ProbeStatus.CONNECTED, identity="me@c.us")

    async def send(self, recipient, message):
        return SendResult.ok("msg-1")

    async def stop(self):
        pass


class EmptySource(DocumentSource):

    def __init__(self):
        super().__init__(ConnectorSettings(connector_type="fake"))

    async def connect(self):
        return True

    async def disconnect(self):
        pass

    async def list_pending(self, query):
        return []

    async def mark_delivered(self, document, delivered_on):
        pass

    async def get_contact(self, counterparty_id):
        raise NotImplementedError


@pytest.fixture
def service(tmp_path):
    (tmp_path / "pdfs").mkdir()
    config = ServiceConfig(
        session=SessionConfig(session_info_path=tmp_path / "session-info.json"),
        delivery=DeliveryConfig(artifact_dir=tmp_path / "pdfs", inter_item_delay_seconds=0),
    )
    return DeliveryService(config, source=EmptySource(), transport=ReadyTransport())


def wait_until(client, path, predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(path).json()
        if predicate(body):
            return body
        time.sleep(0.02)
    raise AssertionError(f"{path} never satisfied the condition")


class TestWithoutService:

    def test_health(self):
        client = TestClient(create_app())
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["services"]["session"] == "unknown"

    def test_ready_and_live(self):
        client = TestClient(create_app())
        assert client.get("/ready").status_code == 503
        assert client.get("/live").json() == {"status": "alive"}

    def test_status_unavailable(self):
        client = TestClient(create_app())
        assert client.get("/status").status_code == 503
        assert client.post("/status/cycle").status_code == 503


class TestWithService:

    def test_status_before_start(self, service):
        with TestClient(create_app(service)) as client:
            body = client.get("/status").json()
            assert body["session"]["state"] == "UNINITIALIZED"
            assert body["cycle_running"] is False
            assert body["missed_pending"] == 0
            assert body["last_cycle"] is None
            assert "cycles" in body["metrics"]

            health = client.get("/health").json()
            assert health["status"] == "degraded"
            assert health["services"]["erp"] == "DISCONNECTED"

    def test_cycle_refused_until_ready(self, service):
        with TestClient(create_app(service)) as client:
            response = client.post("/status/cycle")
            assert response.status_code == 409
            assert "UNINITIALIZED" in response.json()["detail"]

    def test_session_start_then_cycle(self, service):
        with TestClient(create_app(service)) as client:
            assert client.post("/status/session/start").status_code == 202
            wait_until(client, "/status/session", lambda b: b["state"] == "READY")

            assert client.get("/ready").status_code == 200
            assert client.post("/status/session/start").status_code == 409

            assert client.post("/status/cycle").status_code == 202
            body = wait_until(client, "/status", lambda b: b["last_cycle"] is not None)
            assert body["last_cycle"]["candidates"] == 0
            assert body["last_cycle"]["halted"] is False

    def test_report_with_nothing_missed(self, service):
        with TestClient(create_app(service)) as client:
            body = client.post("/status/report").json()
            assert body["accepted"] is False

    def test_missed_and_artifacts(self, service):
        (service.config.delivery.artifact_dir / "Factura_de_deudores_14936.pdf").write_bytes(b"%PDF-1.4")
        with TestClient(create_app(service)) as client:
            assert client.get("/status/missed").json() == []
            artifacts = client.get("/status/artifacts").json()
            assert artifacts == [{"filename": "Factura_de_deudores_14936.pdf", "size_bytes": 8}]
