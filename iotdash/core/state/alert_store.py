from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from iotdash.domain.errors import NotFoundError
from iotdash.domain.models import Alert, AlertType

DEFAULT_COOLDOWN_MS = 60_000


@dataclass
class AlertStore:
    """
    In-memory store for raised alerts with content-based deduplication.

    Deduplication
    -------------
    A new alert is dropped when an *unacknowledged* alert for the same
    ``(device_id, type)`` already exists whose timestamp lies within
    ``cooldown_ms`` of the new one. Timestamps are reading timestamps, so
    replaying the same telemetry produces the same outcome.

    Notes
    -----
    - Alert ids keep occurrences apart; deduplication never looks at them.
    - Acknowledging is idempotent and silently ignores unknown ids, while
      clearing an unknown id raises `NotFoundError`.
    - This store is not thread-safe. Synchronization is handled by the
      enclosing `StateEngine`.

    Attributes
    ----------
    cooldown_ms
        Suppression window for repeated alerts.
    """

    cooldown_ms: int = DEFAULT_COOLDOWN_MS
    _alerts: Dict[str, Alert] = field(default_factory=dict)

    def raise_alert(self, alert: Alert) -> bool:
        """
        Store an alert unless it duplicates a recent unacknowledged one.

        Parameters
        ----------
        alert
            Candidate alert produced by the evaluator (or the API).

        Returns
        -------
        bool
            True if the alert was stored, False if it was suppressed.
        """
        for existing in self._alerts.values():
            if existing.acknowledged:
                continue
            if existing.device_id != alert.device_id or existing.type is not alert.type:
                continue
            if abs(existing.timestamp - alert.timestamp) < self.cooldown_ms:
                return False

        self._alerts[alert.id] = alert
        return True

    def get(self, alert_id: str) -> Optional[Alert]:
        return self._alerts.get(alert_id)

    def acknowledge(self, alert_id: str) -> Optional[Alert]:
        """
        Mark an alert as acknowledged.

        Returns
        -------
        Alert or None
            The acknowledged alert, or None when the id is unknown.
        """
        alert = self._alerts.get(alert_id)
        if alert is None:
            return None
        if not alert.acknowledged:
            alert = replace(alert, acknowledged=True)
            self._alerts[alert_id] = alert
        return alert

    def clear(self, alert_id: str) -> Alert:
        """
        Remove an alert.

        Raises
        ------
        NotFoundError
            If no alert with this id exists.
        """
        alert = self._alerts.pop(alert_id, None)
        if alert is None:
            raise NotFoundError(f"Alert {alert_id} not found")
        return alert

    def list(
        self,
        device_id: Optional[str] = None,
        acknowledged: Optional[bool] = None,
        alert_type: Optional[AlertType] = None,
    ) -> List[Alert]:
        """
        Return alerts matching all given filters, newest first.

        Parameters
        ----------
        device_id
            Keep only alerts of this device.
        acknowledged
            Keep only acknowledged (True) or unacknowledged (False) alerts.
        alert_type
            Keep only alerts of this type.
        """
        out = [
            a
            for a in self._alerts.values()
            if (device_id is None or a.device_id == device_id)
            and (acknowledged is None or a.acknowledged is acknowledged)
            and (alert_type is None or a.type is alert_type)
        ]
        out.sort(key=lambda a: a.timestamp, reverse=True)
        return out

    def list_unacknowledged(self) -> List[Alert]:
        return self.list(acknowledged=False)

    def __len__(self) -> int:
        return len(self._alerts)
