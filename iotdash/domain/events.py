"""
Engine event domain models.

Events describe *what happened* inside the state engine at a specific time.
They are published on the event bus after the engine has committed the
corresponding state change, and are typically consumed for:
- logging and audit trails
- outbound notifications (webhooks)
- live dashboard streams
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from iotdash.domain.models import Alert, DeviceStatus


@dataclass(frozen=True)
class AlertRaised:
    """
    Emitted when the alert store accepted a new alert.

    Suppressed duplicates never produce this event.

    Parameters
    ----------
    alert
        The stored alert.
    """

    alert: Alert


@dataclass(frozen=True)
class DeviceStatusChanged:
    """
    Emitted when a device transitions between online and offline.

    Parameters
    ----------
    device_id
        Device whose status changed.
    previous
        Status before the transition.
    current
        Status after the transition.
    timestamp
        Time (epoch ms) the transition was applied.
    """

    device_id: str
    previous: DeviceStatus
    current: DeviceStatus
    timestamp: int


EngineEvent = Union[AlertRaised, DeviceStatusChanged]
