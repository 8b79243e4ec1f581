from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from iotdash.notification.base import NotificationEvent


@dataclass(frozen=True)
class WebhookConfig:
    """
    Parameters
    ----------
    url
        Endpoint receiving the POSTs.
    timeout_s
        Per-request timeout.
    verify_tls
        Verify the server certificate.
    auth_header
        Full ``Authorization`` header value, e.g. ``"Bearer <token>"``.
    """

    url: str
    timeout_s: float = 2.0
    verify_tls: bool = True
    auth_header: Optional[str] = None


def webhook_body(event: NotificationEvent) -> Dict[str, Any]:
    """Wrap a notification as ``{type, deviceId, ts, data}``."""
    return {
        "type": event.type,
        "deviceId": event.device_id,
        "ts": event.ts,
        "data": event.payload,
    }


class WebhookNotifier:
    """
    POSTs notifications as JSON to a single webhook endpoint.

    Called only from the notification worker thread. Non-2xx answers raise
    ``requests.HTTPError`` so the worker's retry policy applies to them too.
    """

    def __init__(self, cfg: WebhookConfig):
        self._cfg = cfg
        self._headers = {"Content-Type": "application/json"}
        if cfg.auth_header:
            self._headers["Authorization"] = cfg.auth_header

    def notify(self, event: NotificationEvent) -> None:
        resp = requests.post(
            self._cfg.url,
            json=webhook_body(event),
            headers=dict(self._headers),
            timeout=self._cfg.timeout_s,
            verify=self._cfg.verify_tls,
        )
        resp.raise_for_status()
