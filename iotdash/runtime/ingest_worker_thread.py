from __future__ import annotations

import logging
import threading
from queue import Empty, Queue

from iotdash.core.state_engine import StateEngine
from iotdash.domain.models import TelemetryReading
from iotdash.transport.codec import DeviceAck, InboundMessage

logger = logging.getLogger(__name__)


class IngestWorkerThread:
    """
    Worker thread feeding decoded transport messages into the engine.

    Responsibilities
    ----------------
    - Consume :data:`InboundMessage` items from a queue.
    - Telemetry goes to :meth:`StateEngine.ingest`, acks to
      :meth:`StateEngine.handle_ack`.

    Concurrency Model
    -----------------
    - Polls the queue with a timeout to remain responsive to stop signals.
    - A failure on one message is logged; the thread keeps running.

    Parameters
    ----------
    engine
        State engine receiving the messages.
    inbound_q
        Queue filled by transport adapters.
    stop_event
        Thread stop signal.
    """

    def __init__(
        self,
        engine: StateEngine,
        inbound_q: "Queue[InboundMessage]",
        stop_event: threading.Event,
    ):
        self._engine = engine
        self._q = inbound_q
        self._stop = stop_event
        self._thread = threading.Thread(target=self._run, name="ingest-worker", daemon=True)

    def start(self) -> None:
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: float | None = 2.0) -> None:
        if self._thread.is_alive():
            self._thread.join(timeout=timeout)

    def handle(self, msg: InboundMessage) -> None:
        """Dispatch a single message (also used directly by tests)."""
        if isinstance(msg, TelemetryReading):
            self._engine.ingest(msg)
        elif isinstance(msg, DeviceAck):
            self._engine.handle_ack(msg.device_id, msg.ack)
        else:
            logger.warning("ignoring unsupported inbound message %r", type(msg).__name__)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                msg = self._q.get(timeout=0.5)
            except Empty:
                continue

            try:
                self.handle(msg)
            except Exception:
                logger.exception("ingest failed for %r", msg)
