from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from queue import Full, Queue
from typing import Any, Callable, Optional, Tuple
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

from iotdash.core.clock import Clock, SystemClock
from iotdash.domain.errors import TransportError
from iotdash.domain.models import ControlCommand
from iotdash.transport.codec import InboundMessage, decode_mqtt_message, encode_command, encode_server_status
from iotdash.transport.topics import (
    ACK_SUBSCRIPTION,
    SERVER_STATUS_TOPIC,
    TELEMETRY_SUBSCRIPTION,
    control_topic,
)

logger = logging.getLogger(__name__)


def parse_broker_url(url: str) -> Tuple[str, int]:
    """
    Split ``mqtt://host:port`` into ``(host, port)``; port defaults to 1883.

    Raises
    ------
    ValueError
        If the scheme is not ``mqtt``/``tcp`` or the host is missing.
    """
    u = urlparse(url)
    if u.scheme not in ("mqtt", "tcp") or not u.hostname:
        raise ValueError(f"Invalid MQTT broker URL: {url!r}")
    return u.hostname, u.port or 1883


@dataclass(frozen=True)
class MqttBridgeConfig:
    """
    Connection settings for the MQTT bridge.

    Parameters
    ----------
    broker_url
        Broker address, e.g. ``mqtt://localhost:1883``.
    client_id
        MQTT client identifier.
    username, password
        Optional broker credentials.
    keepalive_s
        MQTT keepalive interval.
    qos
        QoS used for subscriptions and command publishing.
    """

    broker_url: str = "mqtt://localhost:1883"
    client_id: str = "iot-dashboard-server"
    username: Optional[str] = None
    password: Optional[str] = None
    keepalive_s: int = 30
    qos: int = 1


def _rc_int(rc: Any) -> int:
    # paho 2.x passes ReasonCode objects, older call sites plain ints
    try:
        return int(getattr(rc, "value", rc))
    except (TypeError, ValueError):
        return -1


class MqttBridge:
    """
    Bidirectional MQTT adapter between devices and the state engine.

    Responsibilities
    ----------------
    - Subscribe to device telemetry and ack topics.
    - Decode each message on the paho network thread and enqueue the typed
      result into ``inbound_q`` for the ingest worker.
    - Publish control commands (acts as the engine's command sink).
    - Publish a retained server status, with an ``offline`` last will.

    Backpressure Policy
    -------------------
    Malformed messages and messages arriving while ``inbound_q`` is full are
    logged and dropped. Nothing from this class reaches engine state directly.

    Parameters
    ----------
    cfg
        Broker connection settings.
    inbound_q
        Queue receiving decoded :data:`~iotdash.transport.codec.InboundMessage` items.
    clock
        Time source for defaulting missing timestamps.
    client_factory
        Optional factory returning a paho-compatible client (used by tests).
    """

    def __init__(
        self,
        cfg: MqttBridgeConfig,
        inbound_q: "Queue[InboundMessage]",
        clock: Optional[Clock] = None,
        client_factory: Optional[Callable[[str], Any]] = None,
    ):
        self._cfg = cfg
        self._q = inbound_q
        self._clock = clock or SystemClock()
        self._connected = threading.Event()
        self.dropped = 0

        factory = client_factory or self._default_client
        self._client = factory(cfg.client_id)
        if cfg.username:
            self._client.username_pw_set(cfg.username, cfg.password)
        self._client.will_set(
            SERVER_STATUS_TOPIC,
            payload=encode_server_status("offline", self._clock.now_ms()),
            qos=1,
            retain=True,
        )
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

    @staticmethod
    def _default_client(client_id: str) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
        )
        client.enable_logger(logger)
        client.reconnect_delay_set(min_delay=1, max_delay=30)
        return client

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    # --- Lifecycle ---
    def start(self) -> None:
        """
        Connect asynchronously and start the paho network loop.

        The loop keeps reconnecting in the background if the broker is down.
        """
        host, port = parse_broker_url(self._cfg.broker_url)
        logger.info("connecting to MQTT broker %s:%d as %s", host, port, self._cfg.client_id)
        self._client.connect_async(host, port, keepalive=self._cfg.keepalive_s)
        self._client.loop_start()

    def stop(self) -> None:
        """Publish the offline status, disconnect and stop the network loop."""
        if self._connected.is_set():
            self._publish_status("offline")
        self._client.disconnect()
        self._client.loop_stop()
        self._connected.clear()

    # --- Command sink ---
    def send_command(self, device_id: str, command: ControlCommand) -> bool:
        """
        Publish a control command to ``iot/classroom/{deviceId}/control``.

        Returns
        -------
        bool
            False if the bridge is disconnected or paho refused the publish.
        """
        if not self._connected.is_set():
            logger.warning("cannot send %s to %s: MQTT not connected", command.command.value, device_id)
            return False
        info = self._client.publish(control_topic(device_id), encode_command(command), qos=self._cfg.qos)
        return _rc_int(info.rc) == mqtt.MQTT_ERR_SUCCESS

    # --- paho callbacks ---
    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        rc = _rc_int(reason_code)
        if rc != 0:
            logger.warning("MQTT connect failed rc=%s, retrying", rc)
            return
        self._connected.set()
        for topic in (TELEMETRY_SUBSCRIPTION, ACK_SUBSCRIPTION):
            client.subscribe(topic, qos=self._cfg.qos)
            logger.info("subscribed to %s", topic)
        self._publish_status("online")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties) -> None:
        self._connected.clear()
        logger.info("MQTT disconnected rc=%s", _rc_int(reason_code))

    def _on_message(self, client, userdata, msg) -> None:
        try:
            decoded = decode_mqtt_message(msg.topic, msg.payload, self._clock.now_ms())
        except TransportError as e:
            self.dropped += 1
            logger.warning("dropping message on %s: %s", msg.topic, e)
            return
        except Exception:
            # an exception escaping here would end paho's network loop
            self.dropped += 1
            logger.exception("failed to decode message on %s", msg.topic)
            return

        try:
            self._q.put_nowait(decoded)
        except Full:
            self.dropped += 1
            logger.warning("inbound queue full, dropping message on %s", msg.topic)

    def _publish_status(self, status: str) -> None:
        self._client.publish(
            SERVER_STATUS_TOPIC,
            encode_server_status(status, self._clock.now_ms()),
            qos=1,
            retain=True,
        )
