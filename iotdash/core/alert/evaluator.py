"""
Threshold evaluation.

This module turns one telemetry reading and the device's threshold into zero
or more alert records. It is a pure function apart from alert id generation:
no store access, no I/O, no clock reads for the alert timestamp (alerts carry
the reading's timestamp).

Bounds are exclusive: a value equal to a bound never alerts.
"""

from __future__ import annotations

import math
import secrets
import time
from decimal import Decimal
from typing import Callable, List, Optional

from iotdash.domain.models import Alert, AlertType, TelemetryReading, Threshold

_ID_TAGS = {
    AlertType.TEMPERATURE_HIGH: "temp-high",
    AlertType.TEMPERATURE_LOW: "temp-low",
    AlertType.HUMIDITY_HIGH: "humid-high",
    AlertType.HUMIDITY_LOW: "humid-low",
}


def format_number(value: float) -> str:
    """
    Render a number for alert messages the way a JavaScript client would.

    Integral values carry no ``.0`` (``30°C``, not ``30.0°C``). Plain decimal
    notation is used for magnitudes in ``[1e-6, 1e21)``; anything outside
    switches to ``1e-7`` / ``1e+21`` style exponents.
    """
    f = float(value)
    if math.isnan(f):
        return "NaN"
    if math.isinf(f):
        return "Infinity" if f > 0 else "-Infinity"
    if f == 0:
        return "0"

    # shortest round-tripping digits, trailing zeros stripped
    _, digits, exp = Decimal(repr(abs(f))).normalize().as_tuple()
    s = "".join(str(d) for d in digits)
    k = len(s)
    point = k + exp

    if k <= point <= 21:
        body = s + "0" * (point - k)
    elif 0 < point <= 21:
        body = f"{s[:point]}.{s[point:]}"
    elif -6 < point <= 0:
        body = "0." + "0" * -point + s
    else:
        e = point - 1
        mantissa = s if k == 1 else f"{s[0]}.{s[1:]}"
        body = f"{mantissa}e{'+' if e > 0 else '-'}{abs(e)}"
    return "-" + body if f < 0 else body


def make_alert_id(device_id: str, alert_type: AlertType) -> str:
    """
    Build an alert id unique per occurrence.

    The id combines the device, a short type tag, a nanosecond timestamp and a
    random suffix, so identical evaluations at different instants never collide.
    """
    return f"{device_id}-{_ID_TAGS[alert_type]}-{time.time_ns()}-{secrets.token_hex(5)}"


def _alert(
    reading: TelemetryReading,
    alert_type: AlertType,
    value: float,
    bound: float,
    message: str,
    id_factory: Callable[[str, AlertType], str],
) -> Alert:
    return Alert(
        id=id_factory(reading.device_id, alert_type),
        device_id=reading.device_id,
        type=alert_type,
        value=value,
        threshold=bound,
        timestamp=reading.timestamp,
        message=message,
    )


def evaluate(
    reading: TelemetryReading,
    threshold: Threshold,
    id_factory: Optional[Callable[[str, AlertType], str]] = None,
) -> List[Alert]:
    """
    Evaluate a reading against a threshold.

    Parameters
    ----------
    reading
        Telemetry reading to check.
    threshold
        Bounds to check against. Unset bounds are skipped.
    id_factory
        Optional alert id generator, ``(device_id, alert_type) -> str``.
        Defaults to :func:`make_alert_id`.

    Returns
    -------
    list of Alert
        Temperature alerts first, then humidity alerts. Empty when the
        threshold is disabled.
    """
    if not threshold.enabled:
        return []

    new_id = id_factory or make_alert_id
    alerts: List[Alert] = []

    temp = reading.temperature
    if threshold.temperature_max is not None and temp > threshold.temperature_max:
        alerts.append(
            _alert(
                reading,
                AlertType.TEMPERATURE_HIGH,
                temp,
                threshold.temperature_max,
                f"Temperature {format_number(temp)}°C exceeds maximum threshold "
                f"{format_number(threshold.temperature_max)}°C",
                new_id,
            )
        )
    if threshold.temperature_min is not None and temp < threshold.temperature_min:
        alerts.append(
            _alert(
                reading,
                AlertType.TEMPERATURE_LOW,
                temp,
                threshold.temperature_min,
                f"Temperature {format_number(temp)}°C below minimum threshold "
                f"{format_number(threshold.temperature_min)}°C",
                new_id,
            )
        )

    hum = reading.humidity
    if threshold.humidity_max is not None and hum > threshold.humidity_max:
        alerts.append(
            _alert(
                reading,
                AlertType.HUMIDITY_HIGH,
                hum,
                threshold.humidity_max,
                f"Humidity {format_number(hum)}% exceeds maximum threshold "
                f"{format_number(threshold.humidity_max)}%",
                new_id,
            )
        )
    if threshold.humidity_min is not None and hum < threshold.humidity_min:
        alerts.append(
            _alert(
                reading,
                AlertType.HUMIDITY_LOW,
                hum,
                threshold.humidity_min,
                f"Humidity {format_number(hum)}% below minimum threshold "
                f"{format_number(threshold.humidity_min)}%",
                new_id,
            )
        )

    return alerts
