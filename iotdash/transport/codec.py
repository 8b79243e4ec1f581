from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

from iotdash.domain.errors import TransportError
from iotdash.domain.models import AckResponse, ControlCommand, TelemetryReading
from iotdash.transport.topics import TOPIC_PREFIX


@dataclass(frozen=True)
class DeviceAck:
    """An acknowledgment together with the device that sent it."""

    device_id: str
    ack: AckResponse


InboundMessage = Union[TelemetryReading, DeviceAck]


def _load_json(payload: Union[bytes, str]) -> Dict[str, Any]:
    """
    Parse a raw payload into a JSON object.

    Raises
    ------
    TransportError
        If the payload is not UTF-8, not JSON, or not a JSON object.
    """
    try:
        text = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else payload
        obj = json.loads(text)
    except (UnicodeDecodeError, ValueError) as e:
        raise TransportError(f"Unparseable payload: {e}") from e

    if not isinstance(obj, dict):
        raise TransportError("Payload must be a JSON object")
    return obj


def _number(obj: Dict[str, Any], key: str) -> float:
    v = obj.get(key)
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise TransportError(f"Field '{key}' must be a number")
    try:
        f = float(v)
    except OverflowError:
        raise TransportError(f"Field '{key}' is out of range") from None
    if not math.isfinite(f):
        raise TransportError(f"Field '{key}' must be finite")
    return f


def _epoch_ms(v: Any) -> int:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise TransportError("Field 'ts' must be an epoch-ms number")
    try:
        finite = math.isfinite(v)
    except OverflowError:
        finite = False
    if not finite:
        raise TransportError("Field 'ts' must be an epoch-ms number")
    return int(v)


def parse_topic(topic: str) -> Tuple[str, str]:
    """
    Split a device topic into ``(device_id, suffix)``.

    Parameters
    ----------
    topic
        Topic of the form ``iot/classroom/{deviceId}/{suffix}``.

    Raises
    ------
    TransportError
        If the topic does not follow the layout.
    """
    prefix = TOPIC_PREFIX + "/"
    if not topic.startswith(prefix):
        raise TransportError(f"Invalid topic format: {topic}")
    parts = topic[len(prefix):].split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise TransportError(f"Invalid topic format: {topic}")
    return parts[0], parts[1]


def decode_telemetry(device_id: str, obj: Dict[str, Any], now_ms: int) -> TelemetryReading:
    """
    Build a :class:`TelemetryReading` from a decoded telemetry object.

    ``ts`` falls back to ``now_ms`` when the device did not stamp the reading.
    ``led`` defaults to False. A ``deviceId`` inside the body must agree with
    the routing device id.
    """
    if not device_id:
        raise TransportError("Telemetry without device id")
    body_id = obj.get("deviceId")
    if body_id is not None and str(body_id) != device_id:
        raise TransportError(f"Device id mismatch: topic {device_id}, body {body_id}")

    ts = obj.get("ts", obj.get("timestamp"))
    if ts is None:
        timestamp = now_ms
    else:
        timestamp = _epoch_ms(ts)

    led = obj.get("led", False)
    if not isinstance(led, bool):
        raise TransportError("Field 'led' must be a boolean")

    return TelemetryReading(
        device_id=device_id,
        timestamp=timestamp,
        temperature=_number(obj, "temperature"),
        humidity=_number(obj, "humidity"),
        led_on=led,
    )


def decode_ack(obj: Dict[str, Any], now_ms: int) -> AckResponse:
    command = obj.get("command")
    success = obj.get("success")
    if not isinstance(command, str) or not command:
        raise TransportError("Ack without command")
    if not isinstance(success, bool):
        raise TransportError("Field 'success' must be a boolean")
    try:
        ts = _epoch_ms(obj.get("ts"))
    except TransportError:
        ts = now_ms
    message = obj.get("message")
    return AckResponse(
        command=command,
        success=success,
        ts=int(ts),
        message=str(message) if message is not None else None,
    )


def decode_mqtt_message(topic: str, payload: Union[bytes, str], now_ms: int) -> InboundMessage:
    """
    Decode an MQTT message, dispatching on the topic suffix.

    Supported suffixes
    ------------------
    - ``telemetry`` -> :class:`~iotdash.domain.models.TelemetryReading`
    - ``ack``       -> :class:`DeviceAck`

    Raises
    ------
    TransportError
        For unknown topics/suffixes or malformed payloads.
    """
    device_id, suffix = parse_topic(topic)
    obj = _load_json(payload)

    if suffix == "telemetry":
        return decode_telemetry(device_id, obj, now_ms)
    if suffix == "ack":
        return DeviceAck(device_id=device_id, ack=decode_ack(obj, now_ms))

    raise TransportError(f"Unknown message type: {suffix}")


def decode_ws_message(payload: Union[bytes, str], now_ms: int) -> InboundMessage:
    """
    Decode a WebSocket message of the shape ``{"type", "deviceId", "data"}``.

    ``type`` is ``telemetry`` or ``ack``.
    """
    obj = _load_json(payload)
    t = obj.get("type")
    device_id = obj.get("deviceId")
    data = obj.get("data")
    if not isinstance(device_id, str) or not device_id:
        raise TransportError("Message without deviceId")
    if not isinstance(data, dict):
        raise TransportError("Field 'data' must be an object")

    if t == "telemetry":
        return decode_telemetry(device_id, data, now_ms)
    if t == "ack":
        return DeviceAck(device_id=device_id, ack=decode_ack(data, now_ms))

    raise TransportError(f"Unknown message type: {t}")


def encode_command(cmd: ControlCommand) -> str:
    return json.dumps(cmd.to_dict())


def encode_ack(ack: AckResponse) -> str:
    return json.dumps(ack.to_dict())


def encode_server_status(status: str, now_ms: int, extra: Optional[Dict[str, Any]] = None) -> str:
    body: Dict[str, Any] = {"status": status, "timestamp": now_ms}
    if extra:
        body.update(extra)
    return json.dumps(body)
