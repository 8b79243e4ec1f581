from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from queue import Full, Queue

from iotdash.domain.events import EngineEvent

logger = logging.getLogger(__name__)


@dataclass
class EventBus:
    """
    In-process event bus for engine events using a thread-safe queue.

    The bus provides a simple producer/consumer mechanism:
    - The state engine publishes `AlertRaised` / `DeviceStatusChanged` via :meth:`publish`.
    - Consumers (e.g., the notification adapter thread) read from :attr:`events_q`.

    Concurrency Model
    -----------------
    Python's :class:`queue.Queue` is thread-safe, so ingestion threads and the
    liveness monitor may publish concurrently. Only the drop counter is
    guarded by a small lock.

    Backpressure Policy
    -------------------
    If the queue is full, events are dropped (best-effort). Slow notification
    delivery must never block telemetry ingestion.

    Attributes
    ----------
    events_q
        Bounded queue of engine events. Consumers should drain this queue in a loop.
    """

    events_q: "Queue[EngineEvent]" = field(default_factory=lambda: Queue(maxsize=5000))
    dropped: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def publish(self, ev: EngineEvent) -> None:
        """
        Publish an engine event to the queue (non-blocking).

        Parameters
        ----------
        ev
            Event to publish. Dropped (and counted) when the queue is full.
        """
        try:
            self.events_q.put_nowait(ev)
        except Full:
            with self._lock:
                self.dropped += 1
                dropped = self.dropped
            if dropped == 1 or dropped % 1000 == 0:
                logger.warning("event bus full, %d event(s) dropped so far", dropped)
