from __future__ import annotations

from collections import Counter
from typing import Any, Dict

from iotdash.core.state_engine import StateEngine
from iotdash.domain.events import AlertRaised, DeviceStatusChanged, EngineEvent


def _totals(engine: StateEngine) -> Dict[str, Any]:
    stats = engine.stats()
    unacked = engine.unacknowledged_alerts()
    by_type = Counter(a.type.value for a in unacked)
    return {
        **stats,
        "unacknowledgedByType": {k: int(v) for k, v in by_type.items()},
    }


def build_alert_payload(engine: StateEngine, ev: AlertRaised) -> Dict[str, Any]:
    """
    Build a webhook payload for a raised alert plus current engine totals.

    Parameters
    ----------
    engine
        State engine used to read the totals snapshot.
    ev
        Alert event that triggered the webhook.

    Returns
    -------
    dict
        Payload with keys "type", "alert" and "totals".
    """
    return {
        "type": "alert_raised",
        "alert": ev.alert.to_dict(),
        "totals": _totals(engine),
    }


def build_status_payload(engine: StateEngine, ev: DeviceStatusChanged) -> Dict[str, Any]:
    return {
        "type": "device_status",
        "status": {
            "deviceId": ev.device_id,
            "previous": ev.previous.value,
            "current": ev.current.value,
            "timestamp": ev.timestamp,
        },
        "totals": _totals(engine),
    }


def build_event_payload(engine: StateEngine, ev: EngineEvent) -> Dict[str, Any]:
    """Dispatch on the engine event type."""
    if isinstance(ev, AlertRaised):
        return build_alert_payload(engine, ev)
    if isinstance(ev, DeviceStatusChanged):
        return build_status_payload(engine, ev)
    raise TypeError(f"Unsupported engine event: {type(ev).__name__}")
