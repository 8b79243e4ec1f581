from __future__ import annotations

import logging
import threading
from queue import Queue
from typing import Optional

from iotdash.core.state_engine import StateEngine
from iotdash.notification.notification_thread import NotificationWorkerThread
from iotdash.runtime.event_bus import EventBus
from iotdash.runtime.ingest_worker_thread import IngestWorkerThread
from iotdash.runtime.liveness_monitor import DEFAULT_INTERVAL_MS, LivenessMonitor
from iotdash.runtime.notification_adapter_thread import NotificationAdapterThread
from iotdash.simulator.mock_devices import MockDeviceSimulator
from iotdash.transport.codec import InboundMessage
from iotdash.transport.mqtt_bridge import MqttBridge

logger = logging.getLogger(__name__)


class AppRuntime:
    """
    Thread supervisor for the engine's background work.

    Thread Topology
    ---------------
    1) MqttBridge (paho network thread, I/O)
       - decodes telemetry/ack messages
       - pushes typed messages into `inbound_q`

    2) MockDeviceSimulator (optional PeriodicTask)
       - pushes generated readings/acks into the same `inbound_q`

    3) IngestWorkerThread (business logic)
       - drains `inbound_q` into `StateEngine.ingest` / `handle_ack`
       - the engine publishes events into the EventBus

    4) LivenessMonitor (PeriodicTask)
       - marks silent devices offline

    5) NotificationAdapterThread (optional, when a notifier is configured)
       - turns bus events into NotificationEvents for the notifier thread

    Notes
    -----
    - All threads are daemon threads; `stop()` still joins them for clean shutdown.
    - Backpressure: the bridge drops on a full `inbound_q`, the bus drops when
      overloaded, so transport I/O never blocks on engine work.
    """

    def __init__(
        self,
        engine: StateEngine,
        inbound_q: "Queue[InboundMessage]",
        bus: Optional[EventBus] = None,
        notifier: Optional[NotificationWorkerThread] = None,
        bridge: Optional[MqttBridge] = None,
        simulator: Optional[MockDeviceSimulator] = None,
        liveness_interval_ms: int = DEFAULT_INTERVAL_MS,
    ):
        self._engine = engine
        self._bridge = bridge
        self._simulator = simulator
        self._stop = threading.Event()
        self.inbound_q = inbound_q

        self._ingest = IngestWorkerThread(engine=engine, inbound_q=inbound_q, stop_event=self._stop)
        self._liveness = LivenessMonitor(engine, interval_ms=liveness_interval_ms, stop_event=self._stop)

        self._notify_adapter: Optional[NotificationAdapterThread] = None
        if bus is not None and notifier is not None:
            self._notify_adapter = NotificationAdapterThread(
                bus=bus,
                engine=engine,
                notifier=notifier,
                stop_event=self._stop,
            )

    @property
    def is_stopped(self) -> bool:
        return self._stop.is_set()

    def start(self) -> None:
        """
        Start all runtime threads.

        Consumers start before producers so nothing queued is left waiting:
        notification adapter, ingest worker, liveness monitor, then the
        MQTT bridge and the simulator.
        """
        if self._notify_adapter is not None:
            self._notify_adapter.start()
        self._ingest.start()
        self._liveness.start()
        if self._bridge is not None:
            self._bridge.start()
        if self._simulator is not None:
            self._simulator.start()
        logger.info("runtime started")

    def stop(self) -> None:
        """
        Stop producers first, then the workers, and wait briefly for shutdown.
        """
        if self._simulator is not None:
            self._simulator.stop()
        if self._bridge is not None:
            self._bridge.stop()
        self._stop.set()

        if self._simulator is not None:
            self._simulator.join(timeout=2.0)
        self._liveness.join(timeout=2.0)
        self._ingest.join(timeout=2.0)
        if self._notify_adapter is not None:
            self._notify_adapter.join(timeout=2.0)
        logger.info("runtime stopped")
