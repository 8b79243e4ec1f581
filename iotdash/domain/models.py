"""
Domain models and enums.

This module defines the core domain-level types used across the system:
- Device status, alert types and control command kinds
- Telemetry readings and the history data points derived from them
- Devices, thresholds and alerts held by the state engine
- Control commands sent to devices and acknowledgments coming back

Timestamps are integer epoch milliseconds everywhere, matching the wire format
used by the devices. Value objects are frozen dataclasses so they can be shared
across threads without copying.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional


class DeviceStatus(str, Enum):
    """
    Liveness status of a device.

    Members
    -------
    ONLINE : str
        Telemetry arrived within the offline timeout.
    OFFLINE : str
        No telemetry arrived within the offline timeout (or never registered any).
    """

    ONLINE = "online"
    OFFLINE = "offline"


class AlertType(str, Enum):
    """
    Category identifying which threshold bound a reading violated.

    Members
    -------
    TEMPERATURE_HIGH : str
        Temperature rose above the configured maximum.
    TEMPERATURE_LOW : str
        Temperature fell below the configured minimum.
    HUMIDITY_HIGH : str
        Humidity rose above the configured maximum.
    HUMIDITY_LOW : str
        Humidity fell below the configured minimum.
    """

    TEMPERATURE_HIGH = "temperature_high"
    TEMPERATURE_LOW = "temperature_low"
    HUMIDITY_HIGH = "humidity_high"
    HUMIDITY_LOW = "humidity_low"


class CommandType(str, Enum):
    """Control commands understood by the device firmware."""

    LED_TOGGLE = "LED_TOGGLE"
    LED_ON = "LED_ON"
    LED_OFF = "LED_OFF"


@dataclass(frozen=True)
class TelemetryReading:
    """
    One sensor sample reported by a device.

    Parameters
    ----------
    device_id
        Identifier of the reporting device.
    timestamp
        Device-side capture time (epoch ms).
    temperature
        Temperature in °C.
    humidity
        Relative humidity in %.
    led_on
        LED state reported by the device.
    """

    device_id: str
    timestamp: int
    temperature: float
    humidity: float
    led_on: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deviceId": self.device_id,
            "ts": self.timestamp,
            "temperature": self.temperature,
            "humidity": self.humidity,
            "led": self.led_on,
        }


@dataclass(frozen=True)
class DataPoint:
    """
    Telemetry projected for the rolling history buffer.

    Parameters
    ----------
    timestamp
        Capture time (epoch ms).
    temperature
        Temperature in °C.
    humidity
        Relative humidity in %.
    """

    timestamp: int
    temperature: float
    humidity: float

    @classmethod
    def from_reading(cls, reading: TelemetryReading) -> "DataPoint":
        return cls(
            timestamp=reading.timestamp,
            temperature=reading.temperature,
            humidity=reading.humidity,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Device:
    """
    Last-known state of a device.

    'Device' is replaced (never mutated) by the registry on every change, so a
    reference handed to a reader is a stable snapshot.

    Parameters
    ----------
    id
        Device identifier.
    display_name
        Human-friendly name.
    status
        Current liveness status.
    last_seen_at
        Time (epoch ms) the engine last accepted telemetry or a registration.
    last_reading
        Most recent telemetry, if any arrived yet.
    """

    id: str
    display_name: str
    status: DeviceStatus
    last_seen_at: int
    last_reading: Optional[TelemetryReading] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.display_name,
            "status": self.status.value,
            "lastSeen": self.last_seen_at,
            "currentData": self.last_reading.to_dict() if self.last_reading else None,
        }


@dataclass(frozen=True)
class Threshold:
    """
    Alerting bounds for one device.

    Every bound is optional; a check whose bound is None is skipped. When both
    bounds of a metric are set, max must be greater than min. The invariant is
    enforced by the threshold store at write time.

    Parameters
    ----------
    device_id
        Device the bounds apply to.
    temperature_max, temperature_min
        Temperature bounds in °C.
    humidity_max, humidity_min
        Humidity bounds in %.
    enabled
        When False, no alert is raised for the device at all.
    """

    device_id: str
    temperature_max: Optional[float] = None
    temperature_min: Optional[float] = None
    humidity_max: Optional[float] = None
    humidity_min: Optional[float] = None
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deviceId": self.device_id,
            "temperatureMax": self.temperature_max,
            "temperatureMin": self.temperature_min,
            "humidityMax": self.humidity_max,
            "humidityMin": self.humidity_min,
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class Alert:
    """
    A threshold violation raised for a device.

    Parameters
    ----------
    id
        Unique identifier of this occurrence.
    device_id
        Device whose reading violated the threshold.
    type
        Which bound was violated.
    value
        Measured value that violated the bound.
    threshold
        Bound that was violated.
    timestamp
        Timestamp of the triggering reading (epoch ms).
    message
        Human-readable description.
    acknowledged
        Whether an operator acknowledged the alert.
    """

    id: str
    device_id: str
    type: AlertType
    value: float
    threshold: float
    timestamp: int
    message: str
    acknowledged: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "deviceId": self.device_id,
            "type": self.type.value,
            "value": self.value,
            "threshold": self.threshold,
            "timestamp": self.timestamp,
            "acknowledged": self.acknowledged,
            "message": self.message,
        }


@dataclass(frozen=True)
class ControlCommand:
    """Command sent from the server to a device."""

    command: CommandType
    value: bool
    ts: int

    def to_dict(self) -> Dict[str, Any]:
        return {"command": self.command.value, "value": self.value, "ts": self.ts}


@dataclass(frozen=True)
class AckResponse:
    """Acknowledgment a device sends back after executing a command."""

    command: str
    success: bool
    ts: int
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"command": self.command, "success": self.success, "ts": self.ts}
        if self.message is not None:
            out["message"] = self.message
        return out
