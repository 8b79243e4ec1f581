from __future__ import annotations

import logging
import threading
from queue import Empty

from iotdash.core.state_engine import StateEngine
from iotdash.domain.events import AlertRaised, EngineEvent
from iotdash.notification.base import NotificationEvent
from iotdash.notification.notification_thread import NotificationWorkerThread
from iotdash.notification.payload import build_event_payload
from iotdash.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)


def to_notification(engine: StateEngine, ev: EngineEvent) -> NotificationEvent:
    """Convert an engine event into a notification with a totals snapshot."""
    payload = build_event_payload(engine, ev)
    if isinstance(ev, AlertRaised):
        device_id, ts = ev.alert.device_id, ev.alert.timestamp
    else:
        device_id, ts = ev.device_id, ev.timestamp
    return NotificationEvent(type=payload["type"], payload=payload, device_id=device_id, ts=ts)


class NotificationAdapterThread:
    """
    Forwards engine events from the bus to the notification worker.

    Each `AlertRaised` / `DeviceStatusChanged` taken off ``bus.events_q`` is
    converted with :func:`to_notification`, which reads the engine totals at
    conversion time, and handed to :meth:`NotificationWorkerThread.emit`.
    Conversion errors are logged per event; the loop keeps draining.

    Parameters
    ----------
    bus
        Source of engine events.
    engine
        Read for the totals snapshot.
    notifier
        Delivery worker.
    stop_event
        Shared runtime stop signal; the queue is polled every 0.5 s.
    """

    def __init__(
        self,
        bus: EventBus,
        engine: StateEngine,
        notifier: NotificationWorkerThread,
        stop_event: threading.Event,
    ):
        self._bus = bus
        self._engine = engine
        self._notifier = notifier
        self._stop = stop_event
        self._thread = threading.Thread(target=self._run, name="notification-adapter", daemon=True)

    def start(self) -> None:
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: float | None = 2.0) -> None:
        if self._thread.is_alive():
            self._thread.join(timeout=timeout)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                ev = self._bus.events_q.get(timeout=0.5)
            except Empty:
                continue

            try:
                notification = to_notification(self._engine, ev)
            except Exception:
                logger.exception("failed to build notification for %s", type(ev).__name__)
                continue
            self._notifier.emit(notification)
