from __future__ import annotations

from typing import Iterable, List

from iotdash.domain.models import Device, DeviceStatus

DEFAULT_OFFLINE_TIMEOUT_MS = 5_000


def stale_device_ids(devices: Iterable[Device], now_ms: int, timeout_ms: int = DEFAULT_OFFLINE_TIMEOUT_MS) -> List[str]:
    """
    Return ids of online devices whose last telemetry is older than the timeout.

    The check is level-triggered: offline devices are never returned, so a
    transition is reported at most once per silence period.

    Parameters
    ----------
    devices
        Devices to inspect.
    now_ms
        Current time (epoch ms).
    timeout_ms
        Allowed silence; a device is stale when ``now - last_seen_at`` is
        strictly greater than this.

    Returns
    -------
    list of str
        Device ids that should go offline.
    """
    return [
        d.id
        for d in devices
        if d.status is DeviceStatus.ONLINE and now_ms - d.last_seen_at > timeout_ms
    ]
