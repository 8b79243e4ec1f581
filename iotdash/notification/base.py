from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol


@dataclass(frozen=True)
class NotificationEvent:
    """
    Outbound notification built from an engine event.

    Parameters
    ----------
    type
        ``"alert_raised"`` or ``"device_status"``.
    payload
        JSON-ready body (see :mod:`iotdash.notification.payload`).
    device_id
        Device the notification is about, if any.
    ts
        Epoch-ms time of the engine event.
    """

    type: str
    payload: Dict[str, Any]
    device_id: Optional[str] = None
    ts: Optional[int] = None


class Notifier(Protocol):
    """A delivery channel. Raising from :meth:`notify` marks the attempt failed."""

    def notify(self, event: NotificationEvent) -> None:
        ...
