from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import List, Sequence, Union

from iotdash.notification.base import NotificationEvent, Notifier

logger = logging.getLogger(__name__)


class _Stop:
    pass


_STOP = _Stop()


@dataclass(frozen=True)
class NotificationThreadConfig:
    """
    Parameters
    ----------
    max_queue
        Pending notifications kept before new ones are dropped.
    retry_count
        Extra attempts per notifier after the first failure.
    retry_backoff_s
        First retry delay; doubled on every further attempt.
    max_backoff_s
        Upper bound for a single retry delay.
    poll_timeout_s
        Queue poll period while idle.
    """

    max_queue: int = 2000
    retry_count: int = 3
    retry_backoff_s: float = 0.5
    max_backoff_s: float = 5.0
    poll_timeout_s: float = 0.5


class NotificationWorkerThread:
    """
    Delivers notifications off the engine's threads.

    :meth:`emit` only enqueues and never blocks; a full queue drops the new
    notification. The worker hands each notification to every notifier and
    retries failed deliveries with capped exponential backoff. Backoff waits
    on the stop event, so :meth:`stop` does not sit out a retry schedule.

    Attributes
    ----------
    sent, failed, dropped
        Delivery counters (per notifier for ``sent``/``failed``).
    """

    def __init__(self, notifiers: Sequence[Notifier], cfg: NotificationThreadConfig | None = None):
        self._notifiers: List[Notifier] = list(notifiers)
        self._cfg = cfg or NotificationThreadConfig()
        self._q: "queue.Queue[Union[NotificationEvent, _Stop]]" = queue.Queue(maxsize=self._cfg.max_queue)
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="notification-worker", daemon=True)
        self.sent = 0
        self.failed = 0
        self.dropped = 0

    def start(self) -> None:
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        try:
            self._q.put_nowait(_STOP)
        except queue.Full:
            pass  # the worker sees the stop event on its next poll
        if self._thread.is_alive():
            self._thread.join(timeout=2.0)

    def emit(self, event: NotificationEvent) -> None:
        try:
            self._q.put_nowait(event)
        except queue.Full:
            self.dropped += 1
            logger.warning("notification queue full, dropping %s event", event.type)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                item = self._q.get(timeout=self._cfg.poll_timeout_s)
            except queue.Empty:
                continue
            if isinstance(item, _Stop):
                return

            for notifier in self._notifiers:
                if self._send_with_retries(notifier, item):
                    self.sent += 1
                else:
                    self.failed += 1

    def _send_with_retries(self, notifier: Notifier, event: NotificationEvent) -> bool:
        attempts = self._cfg.retry_count + 1
        for attempt in range(attempts):
            try:
                notifier.notify(event)
                return True
            except Exception as e:
                last_error = e
                logger.debug(
                    "%s attempt %d/%d for %s failed: %r",
                    type(notifier).__name__, attempt + 1, attempts, event.type, e,
                )
            if attempt + 1 < attempts:
                delay = min(self._cfg.retry_backoff_s * (2 ** attempt), self._cfg.max_backoff_s)
                if self._stop.wait(delay):
                    break

        logger.error("giving up on %s notification via %s: %r", event.type, type(notifier).__name__, last_error)
        return False
