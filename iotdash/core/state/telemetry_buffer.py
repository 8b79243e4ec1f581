from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional

from iotdash.domain.models import DataPoint

DEFAULT_CAPACITY = 500


@dataclass
class TelemetryBuffer:
    """
    Per-device rolling history of recent data points.

    Each device gets an independent ring of at most ``capacity`` points; when
    full, the oldest point is evicted on append.

    Notes
    -----
    - Points are kept in arrival order. The buffer does not re-sort; it assumes
      devices deliver readings chronologically.
    - Thread-safety is not handled here; the enclosing `StateEngine` is
      responsible for synchronization.

    Attributes
    ----------
    capacity
        Maximum number of points retained per device.
    """

    capacity: int = DEFAULT_CAPACITY
    _series: Dict[str, Deque[DataPoint]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ValueError("capacity must be >= 1")

    def append(self, device_id: str, point: DataPoint) -> None:
        """
        Append a point to a device's buffer, evicting the oldest beyond capacity.

        Parameters
        ----------
        device_id
            Device identifier.
        point
            Data point to append.
        """
        series = self._series.get(device_id)
        if series is None:
            series = deque(maxlen=self.capacity)
            self._series[device_id] = series
        series.append(point)

    def read(self, device_id: str, limit: Optional[int] = None) -> List[DataPoint]:
        """
        Return the most recent points for a device in chronological order.

        Parameters
        ----------
        device_id
            Device identifier.
        limit
            Maximum number of points; None returns the whole buffer.

        Returns
        -------
        list of DataPoint
            Oldest first. Empty if the device has no history.
        """
        series = self._series.get(device_id)
        if not series:
            return []
        points = list(series)
        if limit is None:
            return points
        if limit <= 0:
            return []
        return points[-limit:]

    def size(self, device_id: str) -> int:
        series = self._series.get(device_id)
        return len(series) if series else 0

    def clear(self, device_id: str) -> None:
        """Empty one device's buffer, keeping the others untouched."""
        series = self._series.get(device_id)
        if series is not None:
            series.clear()

    def remove(self, device_id: str) -> None:
        """Drop a device's buffer entirely."""
        self._series.pop(device_id, None)

    def device_ids(self) -> List[str]:
        return list(self._series.keys())
