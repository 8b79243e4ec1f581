from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional

from iotdash.domain.errors import ValidationError
from iotdash.domain.models import Threshold

DEFAULT_THRESHOLD = Threshold(
    device_id="*",
    temperature_max=35.0,
    temperature_min=15.0,
    humidity_max=80.0,
    humidity_min=30.0,
    enabled=True,
)

_BOUND_FIELDS = ("temperature_max", "temperature_min", "humidity_max", "humidity_min")


def _coerce_bound(name: str, raw: Any) -> Optional[float]:
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ValidationError(f"{name} must be a number")
    try:
        value = float(raw)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"{name} must be a number") from None
    if not math.isfinite(value):
        raise ValidationError(f"{name} must be a finite number")
    return value


def _check_bounds(th: Threshold) -> None:
    if th.temperature_max is not None and th.temperature_min is not None:
        if th.temperature_max <= th.temperature_min:
            raise ValidationError("Temperature max must be greater than min")
    if th.humidity_max is not None and th.humidity_min is not None:
        if th.humidity_max <= th.humidity_min:
            raise ValidationError("Humidity max must be greater than min")


@dataclass
class ThresholdStore:
    """
    In-memory store for per-device alerting thresholds.

    Devices without a custom entry resolve to a copy of ``default`` carrying
    their own device id, so :meth:`get` never fails.

    Notes
    -----
    - Validation (max > min) happens on write only; evaluation trusts stored values.
    - This store is not thread-safe. Synchronization is handled by the
      enclosing `StateEngine`.

    Attributes
    ----------
    default
        Process-wide fallback threshold.
    """

    default: Threshold = DEFAULT_THRESHOLD
    _thresholds: Dict[str, Threshold] = field(default_factory=dict)

    def get(self, device_id: str) -> Threshold:
        """
        Return the effective threshold for a device.

        Parameters
        ----------
        device_id
            Device identifier.

        Returns
        -------
        Threshold
            The custom threshold if one is stored, else the default values.
        """
        th = self._thresholds.get(device_id)
        if th is None:
            return replace(self.default, device_id=device_id)
        return th

    def has_custom(self, device_id: str) -> bool:
        return device_id in self._thresholds

    def set(self, device_id: str, update: Mapping[str, Any]) -> Threshold:
        """
        Merge a partial update onto the device's current threshold.

        Parameters
        ----------
        device_id
            Device identifier.
        update
            Mapping with any of ``temperature_max``, ``temperature_min``,
            ``humidity_max``, ``humidity_min`` (number or None to unset) and
            ``enabled`` (bool). Absent keys keep their current value.

        Returns
        -------
        Threshold
            The stored threshold.

        Raises
        ------
        ValidationError
            If a field is unknown or malformed, or if a metric ends up with
            max <= min. The previous threshold is kept.
        """
        unknown = set(update) - set(_BOUND_FIELDS) - {"enabled"}
        if unknown:
            raise ValidationError(f"Unknown threshold fields: {', '.join(sorted(unknown))}")

        changes: Dict[str, Any] = {}
        for name in _BOUND_FIELDS:
            if name in update:
                changes[name] = _coerce_bound(name, update[name])
        if "enabled" in update:
            if not isinstance(update["enabled"], bool):
                raise ValidationError("enabled must be a boolean")
            changes["enabled"] = update["enabled"]

        merged = replace(self.get(device_id), **changes)
        _check_bounds(merged)
        self._thresholds[device_id] = merged
        return merged

    def reset(self, device_id: str) -> Threshold:
        """
        Store the default values as the device's threshold.

        Returns
        -------
        Threshold
            The reset threshold.
        """
        th = replace(self.default, device_id=device_id)
        self._thresholds[device_id] = th
        return th

    def remove(self, device_id: str) -> bool:
        """
        Delete the device's custom threshold.

        Returns
        -------
        bool
            True if a custom entry existed.
        """
        return self._thresholds.pop(device_id, None) is not None

    def all(self) -> List[Threshold]:
        """Return every custom threshold currently stored."""
        return list(self._thresholds.values())
