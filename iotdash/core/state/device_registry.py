from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from iotdash.domain.models import Device, DeviceStatus, TelemetryReading


def default_display_name(device_id: str) -> str:
    """Name given to devices that never registered one explicitly."""
    return f"ESP32-{device_id}"


@dataclass
class DeviceRegistry:
    """
    In-memory registry of known devices and their last-known state.

    Status rules
    ------------
    - :meth:`upsert` (telemetry ingestion) always marks a device online.
    - :meth:`set_status` is the only other status mutator; it is used by the
      liveness monitor and by administrative calls.
    - Devices are never removed implicitly; only :meth:`remove` deletes them.

    Notes
    -----
    Devices are frozen dataclasses; every change stores a new instance. The
    registry is not thread-safe; the enclosing `StateEngine` synchronizes.
    """

    _devices: Dict[str, Device] = field(default_factory=dict)

    def upsert(self, device_id: str, reading: TelemetryReading, now_ms: int) -> Tuple[Device, Optional[DeviceStatus]]:
        """
        Record telemetry for a device, creating it if needed.

        Parameters
        ----------
        device_id
            Device identifier.
        reading
            Telemetry that just arrived.
        now_ms
            Server time the telemetry was accepted (epoch ms).

        Returns
        -------
        tuple
            ``(device, previous_status)`` where ``previous_status`` is None
            for a device created by this call.
        """
        prev = self._devices.get(device_id)
        if prev is None:
            dev = Device(
                id=device_id,
                display_name=default_display_name(device_id),
                status=DeviceStatus.ONLINE,
                last_seen_at=now_ms,
                last_reading=reading,
            )
            self._devices[device_id] = dev
            return dev, None

        dev = replace(prev, status=DeviceStatus.ONLINE, last_seen_at=now_ms, last_reading=reading)
        self._devices[device_id] = dev
        return dev, prev.status

    def register(self, device_id: str, now_ms: int, display_name: Optional[str] = None) -> Device:
        """
        Create or rename a device without telemetry.

        A newly registered device starts offline; an existing device keeps its
        status, last-seen time and last reading.

        Parameters
        ----------
        device_id
            Device identifier.
        now_ms
            Registration time (epoch ms), used as ``last_seen_at`` for new devices.
        display_name
            Optional display name. Defaults to the current or derived name.

        Returns
        -------
        Device
            The stored device.
        """
        prev = self._devices.get(device_id)
        if prev is None:
            dev = Device(
                id=device_id,
                display_name=display_name or default_display_name(device_id),
                status=DeviceStatus.OFFLINE,
                last_seen_at=now_ms,
            )
        else:
            dev = replace(prev, display_name=display_name or prev.display_name)
        self._devices[device_id] = dev
        return dev

    def set_status(self, device_id: str, status: DeviceStatus) -> Optional[Device]:
        """
        Overwrite a device's status.

        Returns
        -------
        Device or None
            The updated device, or None if the device is unknown.
        """
        prev = self._devices.get(device_id)
        if prev is None:
            return None
        dev = replace(prev, status=status)
        self._devices[device_id] = dev
        return dev

    def get(self, device_id: str) -> Optional[Device]:
        return self._devices.get(device_id)

    def list(self) -> List[Device]:
        return list(self._devices.values())

    def remove(self, device_id: str) -> bool:
        return self._devices.pop(device_id, None) is not None
