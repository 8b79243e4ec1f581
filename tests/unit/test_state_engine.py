"""
Unit tests for iotdash.core.state_engine.StateEngine.

These tests validate the engine as the single owner of the stores:
- ingestion updates history, registry and alerts together and emits events
- deduplication across repeated breaches
- liveness sweeps driven by a manual clock
- threshold validation scenario through the engine API
- history paging, device removal (alerts and threshold kept), commands and acks

No threads, no sleeps: the clock is advanced manually.
"""

from __future__ import annotations

from typing import Dict, List, Tuple

import pytest

from iotdash.core.state_engine import EngineConfig, StateEngine
from iotdash.domain.errors import NotFoundError, TransportError, ValidationError
from iotdash.domain.events import AlertRaised, DeviceStatusChanged
from iotdash.domain.models import (
    AckResponse,
    Alert,
    AlertType,
    CommandType,
    ControlCommand,
    DataPoint,
    DeviceStatus,
    TelemetryReading,
)


class _ListBus:
    def __init__(self) -> None:
        self.events: List[object] = []

    def publish(self, ev) -> None:
        self.events.append(ev)


class _FakeSink:
    def __init__(self, accept: bool = True) -> None:
        self.accept = accept
        self.sent: List[Tuple[str, ControlCommand]] = []

    def send_command(self, device_id: str, command: ControlCommand) -> bool:
        self.sent.append((device_id, command))
        return self.accept


def _reading(device_id: str, ts: int, temperature: float = 25.0, humidity: float = 50.0, led: bool = False):
    return TelemetryReading(device_id=device_id, timestamp=ts, temperature=temperature, humidity=humidity, led_on=led)


def _engine(clock, **kwargs) -> Tuple[StateEngine, _ListBus]:
    bus = _ListBus()
    counter: Dict[str, int] = {"n": 0}

    def ids(dev: str, t: AlertType) -> str:
        counter["n"] += 1
        return f"{dev}-{t.value}-{counter['n']}"

    engine = StateEngine(cfg=EngineConfig(**kwargs), clock=clock, bus=bus, id_factory=ids)
    return engine, bus


def test_first_ingest_creates_online_device_and_emits_status(clock) -> None:
    """
    The first reading brings the device online and records history.
    """
    engine, bus = _engine(clock)

    res = engine.ingest(_reading("d1", clock.now))

    assert res.device.status is DeviceStatus.ONLINE
    assert res.alerts == []
    assert engine.get_device("d1").last_seen_at == clock.now
    assert len(engine.recent_points("d1")) == 1
    assert bus.events == [DeviceStatusChanged("d1", DeviceStatus.OFFLINE, DeviceStatus.ONLINE, clock.now)]


def test_ingest_breach_stores_alert_and_emits_alert_event(clock) -> None:
    """
    A breaching reading stores the alert and publishes AlertRaised.
    """
    engine, bus = _engine(clock)
    engine.set_threshold("d1", {"temperature_max": 30, "temperature_min": 10})

    res = engine.ingest(_reading("d1", clock.now, temperature=35.5, humidity=60.0))

    assert len(res.alerts) == 1
    alert = res.alerts[0]
    assert alert.message == "Temperature 35.5°C exceeds maximum threshold 30°C"
    assert engine.get_alert(alert.id) == alert
    assert AlertRaised(alert) in bus.events


def test_repeated_breach_is_deduplicated_until_cooldown_passes(clock) -> None:
    """
    Same (device, type) within the cooldown stores one alert; after it, another.
    """
    engine, _ = _engine(clock, alert_cooldown_ms=60_000)
    t0 = clock.now

    first = engine.ingest(_reading("d1", t0, temperature=40.0))
    second = engine.ingest(_reading("d1", t0 + 2_000, temperature=41.0))
    third = engine.ingest(_reading("d1", t0 + 60_000, temperature=42.0))

    assert len(first.alerts) == 1
    assert second.alerts == [] and second.suppressed == 1
    assert len(third.alerts) == 1
    assert len(engine.list_alerts(device_id="d1")) == 2


def test_acknowledged_alert_allows_new_occurrence(clock) -> None:
    """
    Acknowledging re-arms the alert for the same device/type.
    """
    engine, _ = _engine(clock)
    first = engine.ingest(_reading("d1", clock.now, temperature=40.0)).alerts[0]

    engine.acknowledge_alert(first.id)
    engine.acknowledge_alert(first.id)
    again = engine.ingest(_reading("d1", clock.now + 1, temperature=40.0))

    assert engine.get_alert(first.id).acknowledged is True
    assert len(again.alerts) == 1
    assert engine.acknowledge_alert("missing") is None


def test_liveness_sweep_marks_stale_device_offline_once(clock) -> None:
    """
    now - lastSeen > timeout flips the device offline exactly once.
    """
    engine, bus = _engine(clock, offline_timeout_ms=5_000)
    engine.ingest(_reading("d1", clock.now))
    bus.events.clear()

    clock.advance(5_000)
    assert engine.sweep_liveness() == []

    clock.advance(1)
    events = engine.sweep_liveness()
    assert events == [DeviceStatusChanged("d1", DeviceStatus.ONLINE, DeviceStatus.OFFLINE, clock.now)]
    assert engine.get_device("d1").status is DeviceStatus.OFFLINE

    clock.advance(10_000)
    assert engine.sweep_liveness() == []
    assert bus.events == events


def test_telemetry_after_offline_brings_device_back(clock) -> None:
    """
    Only ingestion marks a device online again, with an online event.
    """
    engine, bus = _engine(clock, offline_timeout_ms=1_000)
    engine.ingest(_reading("d1", clock.now))
    clock.advance(2_000)
    engine.sweep_liveness()
    bus.events.clear()

    engine.ingest(_reading("d1", clock.now))

    assert engine.get_device("d1").status is DeviceStatus.ONLINE
    assert bus.events == [DeviceStatusChanged("d1", DeviceStatus.OFFLINE, DeviceStatus.ONLINE, clock.now)]


def test_invalid_threshold_update_is_rejected_and_state_unchanged(clock) -> None:
    """
    temperatureMax=10, temperatureMin=20 is rejected; the threshold stays as before.
    """
    engine, _ = _engine(clock)
    before = engine.get_threshold("d1")

    with pytest.raises(ValidationError):
        engine.set_threshold("d1", {"temperature_max": 10, "temperature_min": 20})

    assert engine.get_threshold("d1") == before
    assert engine.list_thresholds() == []


def test_disabled_threshold_suppresses_alerts_on_ingest(clock) -> None:
    """
    Disabling a device threshold stops alerting for that device only.
    """
    engine, _ = _engine(clock)
    engine.set_threshold("d1", {"enabled": False})

    assert engine.ingest(_reading("d1", clock.now, temperature=99.0)).alerts == []
    assert len(engine.ingest(_reading("d2", clock.now, temperature=99.0)).alerts) == 1


def test_history_pages_newest_first_across_devices(clock) -> None:
    """
    history() merges devices, sorts newest first and paginates.
    """
    engine, _ = _engine(clock)
    for i in range(5):
        engine.ingest(_reading("a", 1_000 + i * 10))
        engine.ingest(_reading("b", 1_005 + i * 10))

    page1 = engine.history(limit=3)
    page2 = engine.history(limit=3, page=2)

    assert page1.total == 10
    assert [(d, p.timestamp) for d, p in page1.entries] == [("b", 1045), ("a", 1040), ("b", 1035)]
    assert [p.timestamp for _, p in page2.entries] == [1030, 1025, 1020]

    only_a = engine.history(device_id="a", from_ms=1_010, to_ms=1_030)
    assert [p.timestamp for _, p in only_a.entries] == [1030, 1020, 1010]
    body = only_a.to_dict()
    assert body["deviceId"] == "a"
    assert "deviceId" not in body["data"][0]

    with pytest.raises(ValidationError):
        engine.history(page=0)


def test_append_point_backfills_history_without_registering(clock) -> None:
    """
    append_point() writes history but does not create a device.
    """
    engine, _ = _engine(clock)

    engine.append_point("x", DataPoint(timestamp=5, temperature=1.0, humidity=2.0))

    assert [p.timestamp for p in engine.recent_points("x")] == [5]
    with pytest.raises(NotFoundError):
        engine.get_device("x")


def test_remove_device_keeps_alerts_and_threshold(clock) -> None:
    """
    Removing a device drops its history and pending command; alerts and the
    custom threshold stay until cleared explicitly.
    """
    engine, _ = _engine(clock)
    engine.set_threshold("d1", {"temperature_max": 20})
    engine.ingest(_reading("d1", clock.now, temperature=30.0))
    engine.ingest(_reading("d2", clock.now, temperature=40.0))

    engine.remove_device("d1")

    assert [d.id for d in engine.list_devices()] == ["d2"]
    assert engine.recent_points("d1") == []
    assert [t.device_id for t in engine.list_thresholds()] == ["d1"]
    assert len(engine.list_alerts(device_id="d1")) == 1
    assert len(engine.list_alerts(device_id="d2")) == 1
    with pytest.raises(NotFoundError):
        engine.remove_device("d1")


def test_register_and_status_override(clock) -> None:
    """
    Explicit registration creates an offline device; overrides emit events.
    """
    engine, bus = _engine(clock)

    dev = engine.register_device("d1", display_name="Lab")
    assert dev.status is DeviceStatus.OFFLINE

    engine.set_device_status("d1", DeviceStatus.ONLINE)
    assert bus.events[-1] == DeviceStatusChanged("d1", DeviceStatus.OFFLINE, DeviceStatus.ONLINE, clock.now)

    with pytest.raises(NotFoundError):
        engine.set_device_status("nope", DeviceStatus.ONLINE)


def test_create_alert_goes_through_dedup(clock) -> None:
    """
    Externally created alerts are deduplicated like evaluated ones.
    """
    engine, _ = _engine(clock)
    a1 = Alert("x1", "d1", AlertType.HUMIDITY_LOW, 10.0, 20.0, 1_000, "low")
    a2 = Alert("x2", "d1", AlertType.HUMIDITY_LOW, 11.0, 20.0, 2_000, "low")

    assert engine.create_alert(a1) == (a1, True)
    assert engine.create_alert(a2) == (a2, False)
    assert engine.clear_alert("x1") == a1
    with pytest.raises(NotFoundError):
        engine.get_alert("x1")


def test_send_command_toggle_uses_last_led_state_and_ack_resolves(clock) -> None:
    """
    LED_TOGGLE inverts the last reported LED state; a matching ack clears it.
    """
    engine, _ = _engine(clock)
    sink = _FakeSink()
    engine.command_sink = sink
    engine.ingest(_reading("d1", clock.now, led=True))

    cmd = engine.send_command("d1", CommandType.LED_TOGGLE)

    assert cmd.value is False
    assert sink.sent == [("d1", cmd)]
    assert engine.pending_command("d1") == cmd

    assert engine.handle_ack("d1", AckResponse(command="LED_OFF", success=True, ts=1)) is False
    assert engine.handle_ack("d1", AckResponse(command="LED_TOGGLE", success=True, ts=1)) is True
    assert engine.pending_command("d1") is None


def test_send_command_errors(clock) -> None:
    """
    Unknown devices raise NotFoundError; a refusing transport raises TransportError.
    """
    engine, _ = _engine(clock)
    with pytest.raises(NotFoundError):
        engine.send_command("nope", CommandType.LED_ON)

    engine.ingest(_reading("d1", clock.now))
    with pytest.raises(TransportError):
        engine.send_command("d1", CommandType.LED_ON)

    engine.command_sink = _FakeSink(accept=False)
    with pytest.raises(TransportError):
        engine.send_command("d1", CommandType.LED_ON)
    assert engine.pending_command("d1") is None


def test_ack_for_unknown_device_is_not_fatal(clock) -> None:
    """
    An ack nobody waits for is ignored.
    """
    engine, _ = _engine(clock)

    assert engine.handle_ack("ghost", AckResponse(command="LED_ON", success=True, ts=1)) is False


def test_stats_counts(clock) -> None:
    """
    stats() summarizes devices and alerts.
    """
    engine, _ = _engine(clock)
    engine.ingest(_reading("d1", clock.now, temperature=40.0))
    engine.register_device("d2")

    assert engine.stats() == {"devices": 2, "devicesOnline": 1, "alerts": 1, "alertsUnacknowledged": 1}


def test_synchronous_ack_from_sink_resolves_command(clock) -> None:
    """
    A transport that acks before send_command returns still resolves the command.
    """
    engine, _ = _engine(clock)
    engine.ingest(_reading("d1", clock.now))

    class _EchoSink:
        def send_command(self, device_id: str, command) -> bool:
            engine.handle_ack(device_id, AckResponse(command=command.command.value, success=True, ts=1))
            return True

    engine.command_sink = _EchoSink()
    engine.send_command("d1", CommandType.LED_ON)

    assert engine.pending_command("d1") is None
