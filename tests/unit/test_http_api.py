"""
Unit tests for iotdash.api.http_api (Flask test client).

These tests validate:
- the {success, data?, error?, timestamp} envelope on every route
- device, history, threshold and alert routes over a real engine
- error mapping: validation -> 400, not found -> 404, transport -> 503
- unknown routes return a 404 envelope
- non-finite numbers in request bodies are rejected
- CORS headers for the configured origins
"""

from __future__ import annotations

from typing import List, Tuple

import pytest

from iotdash.api.http_api import create_app
from iotdash.core.state_engine import StateEngine
from iotdash.domain.models import ControlCommand, TelemetryReading


class _Sink:
    def __init__(self) -> None:
        self.sent: List[Tuple[str, ControlCommand]] = []

    def send_command(self, device_id: str, command: ControlCommand) -> bool:
        self.sent.append((device_id, command))
        return True


@pytest.fixture
def engine(clock) -> StateEngine:
    return StateEngine(clock=clock)


@pytest.fixture
def client(engine):
    app = create_app(engine)
    app.testing = True
    return app.test_client()


def _ingest(engine: StateEngine, device_id: str, ts: int, temperature: float = 25.0, humidity: float = 50.0) -> None:
    engine.ingest(TelemetryReading(device_id, ts, temperature, humidity))


def test_health_envelope(client, clock) -> None:
    """
    /health reports ok plus counters inside the envelope.
    """
    r = client.get("/health")
    body = r.get_json()

    assert r.status_code == 200
    assert body["success"] is True
    assert body["timestamp"] == clock.now
    assert body["data"]["status"] == "ok"
    assert body["data"]["devices"] == 0


def test_devices_list_get_and_404(client, engine, clock) -> None:
    """
    Devices are listed and fetched; unknown ids are 404 envelopes.
    """
    _ingest(engine, "ESP32_001", clock.now)

    listed = client.get("/api/devices").get_json()["data"]
    assert [d["id"] for d in listed] == ["ESP32_001"]
    assert listed[0]["name"] == "ESP32-ESP32_001"
    assert listed[0]["status"] == "online"
    assert listed[0]["currentData"]["temperature"] == 25.0

    r = client.get("/api/devices/nope")
    assert r.status_code == 404
    assert r.get_json() == {"success": False, "error": "Device nope not found", "timestamp": clock.now}


def test_post_device_registers_and_delete_removes(client) -> None:
    """
    POST creates/renames a device, DELETE removes it.
    """
    r = client.post("/api/devices/lab", json={"name": "Lab sensor"})
    assert r.status_code == 200
    assert r.get_json()["data"]["name"] == "Lab sensor"
    assert r.get_json()["data"]["status"] == "offline"

    r = client.post("/api/devices/lab", json={"status": "online"})
    assert r.get_json()["data"]["status"] == "online"
    assert r.get_json()["data"]["name"] == "Lab sensor"

    assert client.post("/api/devices/lab", json={"status": "sleeping"}).status_code == 400

    assert client.delete("/api/devices/lab").status_code == 200
    assert client.delete("/api/devices/lab").status_code == 404


def test_command_route(client, engine, clock) -> None:
    """
    Commands go to the command sink; no transport maps to 503.
    """
    _ingest(engine, "d1", clock.now)

    assert client.post("/api/devices/d1/command", json={"command": "LED_ON"}).status_code == 503

    sink = _Sink()
    engine.command_sink = sink
    r = client.post("/api/devices/d1/command", json={"command": "LED_ON"})
    assert r.status_code == 200
    assert r.get_json()["data"] == {"command": "LED_ON", "value": True, "ts": clock.now}
    assert sink.sent[0][0] == "d1"

    assert client.post("/api/devices/d1/command", json={"command": "REBOOT"}).status_code == 400
    assert client.post("/api/devices/ghost/command", json={"command": "LED_ON"}).status_code == 404


def test_history_routes(client, engine) -> None:
    """
    History is newest first with paging metadata; POST backfills a point.
    """
    for ts in (100, 200, 300):
        _ingest(engine, "d1", ts)
    _ingest(engine, "d2", 250)

    one = client.get("/api/history/d1?limit=2").get_json()["data"]
    assert one["deviceId"] == "d1"
    assert [p["timestamp"] for p in one["data"]] == [300, 200]
    assert (one["total"], one["page"], one["limit"]) == (3, 1, 2)

    merged = client.get("/api/history?from=200").get_json()["data"]
    assert [(p["deviceId"], p["timestamp"]) for p in merged["data"]] == [("d1", 300), ("d2", 250), ("d1", 200)]

    filtered = client.get("/api/history?deviceId=d2").get_json()["data"]
    assert filtered["total"] == 1

    assert client.get("/api/history/d1?limit=abc").status_code == 400
    assert client.get("/api/history/d1?page=0").status_code == 400

    r = client.post("/api/history/d1", json={"timestamp": 400, "temperature": 21.5, "humidity": 40})
    assert r.get_json()["data"] == {"timestamp": 400, "temperature": 21.5, "humidity": 40.0}
    assert client.post("/api/history/d1", json={"temperature": 1}).status_code == 400


def test_threshold_routes(client) -> None:
    """
    camelCase updates are validated; reset restores defaults; delete drops the custom entry.
    """
    r = client.get("/api/thresholds/d1")
    assert r.get_json()["data"]["temperatureMax"] == 35.0

    r = client.post("/api/thresholds/d1", json={"temperatureMax": 30, "temperatureMin": 10})
    assert r.status_code == 200
    assert r.get_json()["data"]["temperatureMax"] == 30.0
    assert len(client.get("/api/thresholds").get_json()["data"]) == 1

    bad = client.post("/api/thresholds/d1", json={"temperatureMax": 10, "temperatureMin": 20})
    assert bad.status_code == 400
    assert bad.get_json()["error"] == "Temperature max must be greater than min"
    assert client.get("/api/thresholds/d1").get_json()["data"]["temperatureMax"] == 30.0

    assert client.post("/api/thresholds/d1", json={"pressureMax": 1}).status_code == 400

    reset = client.post("/api/thresholds/d1/reset").get_json()["data"]
    assert reset["temperatureMax"] == 35.0

    client.delete("/api/thresholds/d1")
    assert client.get("/api/thresholds").get_json()["data"] == []


def test_alert_routes(client, engine, clock) -> None:
    """
    Alerts can be listed with filters, fetched, acknowledged, created and cleared.
    """
    _ingest(engine, "d1", clock.now, temperature=40.0)
    _ingest(engine, "d2", clock.now, humidity=10.0)

    alerts = client.get("/api/alerts").get_json()["data"]
    assert {a["type"] for a in alerts} == {"temperature_high", "humidity_low"}

    d1 = client.get("/api/alerts?deviceId=d1").get_json()["data"]
    assert len(d1) == 1
    alert_id = d1[0]["id"]

    assert client.get(f"/api/alerts/{alert_id}").get_json()["data"]["deviceId"] == "d1"

    acked = client.post(f"/api/alerts/{alert_id}/ack").get_json()["data"]
    assert acked["acknowledged"] is True
    assert client.post(f"/api/alerts/{alert_id}/ack").status_code == 200
    assert client.post("/api/alerts/missing/ack").status_code == 404

    assert len(client.get("/api/alerts?acknowledged=false").get_json()["data"]) == 1
    assert len(client.get("/api/alerts?type=humidity_low").get_json()["data"]) == 1
    assert client.get("/api/alerts?type=smoke").status_code == 400

    assert client.delete(f"/api/alerts/{alert_id}").status_code == 200
    assert client.delete(f"/api/alerts/{alert_id}").status_code == 404


def test_post_alert_requires_fields(client) -> None:
    """
    POST /api/alerts creates with 201 and validates required fields.
    """
    body = {
        "id": "manual-1",
        "deviceId": "d9",
        "type": "temperature_low",
        "value": 5,
        "threshold": 10,
        "timestamp": 1000,
        "message": "manual",
    }

    r = client.post("/api/alerts", json=body)
    assert r.status_code == 201
    assert r.get_json()["data"]["id"] == "manual-1"

    missing = client.post("/api/alerts", json={"id": "x"})
    assert missing.status_code == 400
    assert missing.get_json()["error"].startswith("Missing required fields")


def test_non_finite_numbers_are_rejected(client) -> None:
    """
    Bare NaN / Infinity tokens in a JSON body yield 400 on threshold and alert creation.
    """
    r = client.post(
        "/api/thresholds/d1",
        data='{"temperatureMax": NaN}',
        content_type="application/json",
    )
    assert r.status_code == 400
    assert r.get_json()["success"] is False
    assert client.get("/api/thresholds").get_json()["data"] == []

    body = (
        '{"id": "m1", "deviceId": "d9", "type": "temperature_low", "value": Infinity,'
        ' "threshold": 10, "timestamp": 1000, "message": "manual"}'
    )
    r = client.post("/api/alerts", data=body, content_type="application/json")
    assert r.status_code == 400
    assert client.get("/api/alerts").get_json()["data"] == []


def test_unknown_route_is_404_envelope(client) -> None:
    """
    Any unknown route returns the error envelope.
    """
    r = client.get("/api/unknown")

    assert r.status_code == 404
    body = r.get_json()
    assert body["success"] is False
    assert "not found" in body["error"]


def test_cors_headers_for_allowed_origin_only(client, engine) -> None:
    """
    The configured origin gets Access-Control-Allow-Origin, including on preflight; others do not.
    """
    r = client.get("/health", headers={"Origin": "http://localhost:5173"})
    assert r.headers.get("Access-Control-Allow-Origin") == "http://localhost:5173"

    pre = client.options(
        "/api/thresholds/d1",
        headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "POST"},
    )
    assert pre.headers.get("Access-Control-Allow-Origin") == "http://localhost:5173"
    assert "POST" in pre.headers.get("Access-Control-Allow-Methods", "")

    other = client.get("/health", headers={"Origin": "http://evil.example"})
    assert "Access-Control-Allow-Origin" not in other.headers

    anyone = create_app(engine, cors_origins=["*"]).test_client()
    allowed = anyone.get("/health", headers={"Origin": "http://x.example"}).headers.get("Access-Control-Allow-Origin")
    assert allowed in ("*", "http://x.example")
