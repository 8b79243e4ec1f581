from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Run a callable on a fixed interval in a dedicated daemon thread.

    Responsibilities
    ----------------
    - Call ``tick`` every ``interval_s`` seconds until stopped.
    - Never overlap ticks: the next wait starts only after a tick returns.
    - Survive tick failures: exceptions are logged and the loop continues.

    Stop Behavior
    -------------
    The loop waits on the stop event rather than sleeping, so :meth:`stop`
    takes effect immediately and no tick starts afterwards. A tick already
    running is allowed to finish.

    Parameters
    ----------
    name
        Thread name (shows up in logs).
    interval_s
        Delay between the end of one tick and the start of the next.
    tick
        Callable invoked on each period.
    stop_event
        Optional shared stop event; a private one is created otherwise.
    """

    def __init__(
        self,
        name: str,
        interval_s: float,
        tick: Callable[[], object],
        stop_event: Optional[threading.Event] = None,
    ):
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        self.name = name
        self.interval_s = interval_s
        self._tick = tick
        self._stop = stop_event or threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive()

    def start(self) -> None:
        """
        Start the task thread if it is not already running.
        """
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self) -> None:
        """
        Signal the task to stop.
        """
        self._stop.set()

    def join(self, timeout: float | None = 2.0) -> None:
        """
        Join the task thread.

        Parameters
        ----------
        timeout
            Maximum time to wait for the thread to exit.
        """
        if self._thread.is_alive():
            self._thread.join(timeout=timeout)

    def tick_once(self) -> None:
        """Run one tick on the caller's thread, with the same error handling."""
        try:
            self._tick()
        except Exception:
            logger.exception("periodic task %s failed", self.name)

    def _run(self) -> None:
        while not self._stop.wait(self.interval_s):
            self.tick_once()
