"""
Unit tests for iotdash.transport.mqtt_bridge.MqttBridge.

A fake paho client is injected through ``client_factory``; no broker is used.

These tests validate:
- last will + retained online status + subscriptions on connect
- inbound messages are decoded and queued; bad ones are dropped
- control commands are published only while connected
- broker URL parsing
"""

from __future__ import annotations

import json
from queue import Queue
from types import SimpleNamespace
from typing import Any, List, Tuple

import pytest

from iotdash.domain.models import CommandType, ControlCommand, TelemetryReading
from iotdash.transport.codec import DeviceAck
from iotdash.transport.mqtt_bridge import MqttBridge, MqttBridgeConfig, parse_broker_url


class FakeClient:
    def __init__(self, client_id: str) -> None:
        self.client_id = client_id
        self.will: Tuple[Any, ...] = ()
        self.published: List[Tuple[str, str, int, bool]] = []
        self.subscribed: List[str] = []
        self.connected_to: Tuple[str, int] = ("", 0)
        self.loop_started = False
        self.disconnected = False
        self.creds: Tuple[Any, ...] = ()

    def username_pw_set(self, username, password) -> None:
        self.creds = (username, password)

    def will_set(self, topic, payload=None, qos=0, retain=False) -> None:
        self.will = (topic, payload, qos, retain)

    def connect_async(self, host, port, keepalive=60) -> None:
        self.connected_to = (host, port)

    def loop_start(self) -> None:
        self.loop_started = True

    def loop_stop(self) -> None:
        self.loop_started = False

    def disconnect(self) -> None:
        self.disconnected = True

    def subscribe(self, topic, qos=0) -> None:
        self.subscribed.append(topic)

    def publish(self, topic, payload=None, qos=0, retain=False):
        self.published.append((topic, payload, qos, retain))
        return SimpleNamespace(rc=0)


def _bridge(clock, **cfg) -> Tuple[MqttBridge, FakeClient, "Queue[Any]"]:
    q: "Queue[Any]" = Queue(maxsize=10)
    holder: List[FakeClient] = []

    def factory(client_id: str) -> FakeClient:
        c = FakeClient(client_id)
        holder.append(c)
        return c

    bridge = MqttBridge(MqttBridgeConfig(**cfg), inbound_q=q, clock=clock, client_factory=factory)
    return bridge, holder[0], q


def _msg(topic: str, body: Any) -> SimpleNamespace:
    payload = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")
    return SimpleNamespace(topic=topic, payload=payload)


def test_start_registers_will_and_connects(clock) -> None:
    """
    The offline last will is retained; start() connects asynchronously.
    """
    bridge, client, _ = _bridge(clock, broker_url="mqtt://broker:1884", username="u", password="p")

    bridge.start()

    topic, payload, qos, retain = client.will
    assert topic == "iot/classroom/server/status"
    assert json.loads(payload)["status"] == "offline"
    assert retain is True and qos == 1
    assert client.connected_to == ("broker", 1884)
    assert client.loop_started is True
    assert client.creds == ("u", "p")


def test_on_connect_subscribes_and_publishes_online(clock) -> None:
    """
    A successful connect subscribes to telemetry and acks and announces online.
    """
    bridge, client, _ = _bridge(clock)

    bridge._on_connect(client, None, {}, 0, None)

    assert client.subscribed == ["iot/classroom/+/telemetry", "iot/classroom/+/ack"]
    topic, payload, _, retain = client.published[-1]
    assert topic == "iot/classroom/server/status"
    assert json.loads(payload)["status"] == "online"
    assert retain is True
    assert bridge.is_connected is True


def test_failed_connect_does_not_subscribe(clock) -> None:
    """
    A refused CONNACK leaves the bridge disconnected.
    """
    bridge, client, _ = _bridge(clock)

    bridge._on_connect(client, None, {}, 5, None)

    assert client.subscribed == []
    assert bridge.is_connected is False


def test_on_message_queues_decoded_messages_and_drops_bad_ones(clock) -> None:
    """
    Valid telemetry/acks are queued; malformed messages are counted and dropped.
    """
    bridge, client, q = _bridge(clock)

    bridge._on_message(client, None, _msg("iot/classroom/d1/telemetry", {"temperature": 20, "humidity": 40, "ts": 1}))
    bridge._on_message(client, None, _msg("iot/classroom/d1/ack", {"command": "LED_ON", "success": True}))
    bridge._on_message(client, None, _msg("iot/classroom/d1/telemetry", b"garbage"))

    first = q.get_nowait()
    second = q.get_nowait()
    assert first == TelemetryReading("d1", 1, 20.0, 40.0, False)
    assert isinstance(second, DeviceAck)
    assert q.empty()
    assert bridge.dropped == 1


def test_on_message_drops_when_queue_full(clock) -> None:
    """
    A full inbound queue drops instead of blocking the network thread.
    """
    bridge, client, q = _bridge(clock)
    for _ in range(q.maxsize):
        q.put_nowait(object())

    bridge._on_message(client, None, _msg("iot/classroom/d1/telemetry", {"temperature": 1, "humidity": 2}))

    assert bridge.dropped == 1


def test_send_command_requires_connection(clock) -> None:
    """
    Commands are refused while disconnected and published to the control topic otherwise.
    """
    bridge, client, _ = _bridge(clock)
    cmd = ControlCommand(CommandType.LED_ON, True, 5)

    assert bridge.send_command("d1", cmd) is False

    bridge._on_connect(client, None, {}, 0, None)
    assert bridge.send_command("d1", cmd) is True

    topic, payload, qos, _ = client.published[-1]
    assert topic == "iot/classroom/d1/control"
    assert json.loads(payload) == {"command": "LED_ON", "value": True, "ts": 5}
    assert qos == 1


def test_stop_announces_offline_and_disconnects(clock) -> None:
    """
    stop() publishes the offline status before disconnecting.
    """
    bridge, client, _ = _bridge(clock)
    bridge._on_connect(client, None, {}, 0, None)

    bridge.stop()

    assert json.loads(client.published[-1][1])["status"] == "offline"
    assert client.disconnected is True
    assert bridge.is_connected is False


def test_parse_broker_url() -> None:
    """
    Broker URLs default to port 1883 and require an mqtt scheme.
    """
    assert parse_broker_url("mqtt://localhost") == ("localhost", 1883)
    assert parse_broker_url("tcp://10.0.0.1:1999") == ("10.0.0.1", 1999)
    with pytest.raises(ValueError):
        parse_broker_url("http://localhost:1883")


def test_out_of_range_number_is_dropped_not_raised(clock) -> None:
    """
    A telemetry value too large for a float is counted and dropped on the network thread.
    """
    bridge, client, q = _bridge(clock)
    huge = b'{"temperature": 1' + b"0" * 400 + b', "humidity": 50}'

    bridge._on_message(client, None, _msg("iot/classroom/d1/telemetry", huge))
    bridge._on_message(client, None, _msg("iot/classroom/d1/telemetry", {"temperature": 20, "humidity": 50, "ts": 3}))

    assert bridge.dropped == 1
    assert q.get_nowait().timestamp == 3
    assert q.empty()
