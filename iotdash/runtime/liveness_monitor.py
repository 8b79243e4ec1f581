from __future__ import annotations

import threading
from typing import List, Optional

from iotdash.core.state_engine import StateEngine
from iotdash.domain.events import DeviceStatusChanged
from iotdash.runtime.periodic_task import PeriodicTask

DEFAULT_INTERVAL_MS = 1_000


class LivenessMonitor:
    """
    Periodic sweep that marks silent devices offline.

    Each tick asks the engine to flip every online device whose telemetry is
    older than the configured offline timeout. Transitions are published by the
    engine as `DeviceStatusChanged` events.

    Concurrency Model
    -----------------
    - Ticks run on a `PeriodicTask` thread.
    - :meth:`tick` is guarded by a non-blocking lock, so a manual tick racing
      the background thread is skipped instead of overlapping it.

    Parameters
    ----------
    engine
        Engine whose registry is swept.
    interval_ms
        Sweep period (default 1 s).
    stop_event
        Optional shared stop event.
    """

    def __init__(
        self,
        engine: StateEngine,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        stop_event: Optional[threading.Event] = None,
    ):
        self._engine = engine
        self._guard = threading.Lock()
        self._task = PeriodicTask(
            name="liveness-monitor",
            interval_s=interval_ms / 1000.0,
            tick=self.tick,
            stop_event=stop_event,
        )

    def tick(self) -> List[DeviceStatusChanged]:
        """
        Run one sweep unless another one is in progress.

        Returns
        -------
        list of DeviceStatusChanged
            Transitions applied by this tick (empty if skipped).
        """
        if not self._guard.acquire(blocking=False):
            return []
        try:
            return self._engine.sweep_liveness()
        finally:
            self._guard.release()

    def start(self) -> None:
        self._task.start()

    def stop(self) -> None:
        self._task.stop()

    def join(self, timeout: float | None = 2.0) -> None:
        self._task.join(timeout=timeout)
