from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple

from iotdash.core.alert.evaluator import evaluate, make_alert_id
from iotdash.core.clock import Clock, SystemClock
from iotdash.core.liveness import DEFAULT_OFFLINE_TIMEOUT_MS, stale_device_ids
from iotdash.core.state.alert_store import DEFAULT_COOLDOWN_MS, AlertStore
from iotdash.core.state.device_registry import DeviceRegistry
from iotdash.core.state.telemetry_buffer import DEFAULT_CAPACITY, TelemetryBuffer
from iotdash.core.state.threshold_store import DEFAULT_THRESHOLD, ThresholdStore
from iotdash.domain.errors import NotFoundError, TransportError, ValidationError
from iotdash.domain.events import AlertRaised, DeviceStatusChanged, EngineEvent
from iotdash.domain.models import (
    AckResponse,
    Alert,
    AlertType,
    CommandType,
    ControlCommand,
    DataPoint,
    Device,
    DeviceStatus,
    TelemetryReading,
    Threshold,
)

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    """Anything that accepts engine events (normally the `EventBus`)."""

    def publish(self, ev: EngineEvent) -> None:
        ...


class CommandSink(Protocol):
    """Transport able to deliver a control command to a device."""

    def send_command(self, device_id: str, command: ControlCommand) -> bool:
        ...


@dataclass(frozen=True)
class EngineConfig:
    """
    Tunables of the state engine.

    Parameters
    ----------
    buffer_capacity
        Rolling history size per device.
    offline_timeout_ms
        Silence after which the liveness sweep marks a device offline.
    alert_cooldown_ms
        Window during which a repeated device+type alert is suppressed.
    default_threshold
        Threshold used for devices without a custom one.
    """

    buffer_capacity: int = DEFAULT_CAPACITY
    offline_timeout_ms: int = DEFAULT_OFFLINE_TIMEOUT_MS
    alert_cooldown_ms: int = DEFAULT_COOLDOWN_MS
    default_threshold: Threshold = DEFAULT_THRESHOLD


@dataclass(frozen=True)
class IngestResult:
    """Outcome of ingesting one reading."""

    device: Device
    alerts: List[Alert]
    suppressed: int = 0


@dataclass(frozen=True)
class HistoryPage:
    """
    One page of telemetry history, newest first.

    ``entries`` pairs each point with its device id so the same shape serves
    single-device and cross-device queries.
    """

    device_id: Optional[str]
    entries: List[Tuple[str, DataPoint]]
    total: int
    page: int
    limit: int

    def to_dict(self) -> Dict[str, Any]:
        if self.device_id is not None:
            data = [p.to_dict() for _, p in self.entries]
        else:
            data = [{**p.to_dict(), "deviceId": dev} for dev, p in self.entries]
        out: Dict[str, Any] = {"data": data, "total": self.total, "page": self.page, "limit": self.limit}
        if self.device_id is not None:
            out = {"deviceId": self.device_id, **out}
        return out


def _in_range(ts: int, from_ms: Optional[int], to_ms: Optional[int]) -> bool:
    if from_ms is not None and ts < from_ms:
        return False
    if to_ms is not None and ts > to_ms:
        return False
    return True


class StateEngine:
    """
    Composition root of the real-time state and alert engine.

    The engine exclusively owns the threshold store, telemetry buffer, device
    registry and alert store, and is the only path through which they change.

    Concurrency Model
    -----------------
    - Ingestion holds a per-device lock for its whole duration, so readings of
      one device are applied one at a time and in arrival order, while
      different devices proceed independently.
    - Threshold evaluation runs outside the shared lock (it is pure).
    - The buffer append, registry upsert and alert raise of one reading are
      committed together under the shared re-entrant lock, so readers (which
      take the same lock) never see one without the others.
    - Events are published after the lock is released.

    Parameters
    ----------
    cfg
        Engine tunables.
    clock
        Time source; defaults to the wall clock.
    bus
        Optional sink for `AlertRaised` / `DeviceStatusChanged` events.
    command_sink
        Optional transport used by :meth:`send_command`.
    id_factory
        Optional alert id generator (mainly for tests).
    """

    def __init__(
        self,
        cfg: Optional[EngineConfig] = None,
        clock: Optional[Clock] = None,
        bus: Optional[EventSink] = None,
        command_sink: Optional[CommandSink] = None,
        id_factory: Optional[Callable[[str, AlertType], str]] = None,
    ):
        self.cfg = cfg or EngineConfig()
        self.clock: Clock = clock or SystemClock()
        self.bus = bus
        self.command_sink = command_sink
        self._id_factory = id_factory or make_alert_id

        self._thresholds = ThresholdStore(default=self.cfg.default_threshold)
        self._buffer = TelemetryBuffer(capacity=self.cfg.buffer_capacity)
        self._devices = DeviceRegistry()
        self._alerts = AlertStore(cooldown_ms=self.cfg.alert_cooldown_ms)
        self._pending: Dict[str, ControlCommand] = {}

        self._lock = threading.RLock()
        self._device_locks: Dict[str, threading.Lock] = {}
        self._device_locks_guard = threading.Lock()

    # --- internals ---
    def _device_lock(self, device_id: str) -> threading.Lock:
        with self._device_locks_guard:
            lock = self._device_locks.get(device_id)
            if lock is None:
                lock = threading.Lock()
                self._device_locks[device_id] = lock
            return lock

    def _publish(self, events: List[EngineEvent]) -> None:
        if self.bus is None:
            return
        for ev in events:
            self.bus.publish(ev)

    # --- Ingestion API ---
    def ingest(self, reading: TelemetryReading) -> IngestResult:
        """
        Apply one telemetry reading.

        Steps: look up the device's threshold, evaluate it, then commit the
        history append, the registry upsert (device goes online) and the
        deduplicated alerts in one critical section.

        Parameters
        ----------
        reading
            Decoded telemetry reading.

        Returns
        -------
        IngestResult
            Updated device, newly stored alerts and the number suppressed.
        """
        device_id = reading.device_id
        events: List[EngineEvent] = []

        with self._device_lock(device_id):
            with self._lock:
                threshold = self._thresholds.get(device_id)

            candidates = evaluate(reading, threshold, id_factory=self._id_factory)

            with self._lock:
                now = self.clock.now_ms()
                self._buffer.append(device_id, DataPoint.from_reading(reading))
                device, prev_status = self._devices.upsert(device_id, reading, now)
                stored = [a for a in candidates if self._alerts.raise_alert(a)]

        if prev_status is not DeviceStatus.ONLINE:
            logger.info("device %s is online", device_id)
            events.append(
                DeviceStatusChanged(
                    device_id=device_id,
                    previous=prev_status or DeviceStatus.OFFLINE,
                    current=DeviceStatus.ONLINE,
                    timestamp=now,
                )
            )
        for alert in stored:
            logger.warning("alert raised for %s: %s", device_id, alert.message)
            events.append(AlertRaised(alert=alert))

        suppressed = len(candidates) - len(stored)
        if suppressed:
            logger.debug("suppressed %d duplicate alert(s) for %s", suppressed, device_id)

        self._publish(events)
        return IngestResult(device=device, alerts=stored, suppressed=suppressed)

    def sweep_liveness(self) -> List[DeviceStatusChanged]:
        """
        Mark online devices offline when their telemetry went stale.

        Devices already offline are left alone, so repeated sweeps never
        re-emit a transition. The sweep never marks a device online.

        Returns
        -------
        list of DeviceStatusChanged
            Transitions applied by this sweep.
        """
        events: List[DeviceStatusChanged] = []
        with self._lock:
            now = self.clock.now_ms()
            for device_id in stale_device_ids(self._devices.list(), now, self.cfg.offline_timeout_ms):
                self._devices.set_status(device_id, DeviceStatus.OFFLINE)
                events.append(
                    DeviceStatusChanged(
                        device_id=device_id,
                        previous=DeviceStatus.ONLINE,
                        current=DeviceStatus.OFFLINE,
                        timestamp=now,
                    )
                )

        for ev in events:
            logger.info("device %s went offline", ev.device_id)
        self._publish(list(events))
        return events

    # --- Devices API ---
    def list_devices(self) -> List[Device]:
        with self._lock:
            return self._devices.list()

    def get_device(self, device_id: str) -> Device:
        """
        Raises
        ------
        NotFoundError
            If the device is unknown.
        """
        with self._lock:
            dev = self._devices.get(device_id)
        if dev is None:
            raise NotFoundError(f"Device {device_id} not found")
        return dev

    def register_device(self, device_id: str, display_name: Optional[str] = None) -> Device:
        """Create a device explicitly (offline until telemetry arrives) or rename it."""
        with self._device_lock(device_id):
            with self._lock:
                return self._devices.register(device_id, self.clock.now_ms(), display_name)

    def set_device_status(self, device_id: str, status: DeviceStatus) -> Device:
        """
        Administrative status override.

        Raises
        ------
        NotFoundError
            If the device is unknown.
        """
        with self._device_lock(device_id):
            with self._lock:
                prev = self._devices.get(device_id)
                if prev is None:
                    raise NotFoundError(f"Device {device_id} not found")
                dev = self._devices.set_status(device_id, status)
                now = self.clock.now_ms()

        if prev.status is not status:
            self._publish([DeviceStatusChanged(device_id, prev.status, status, now)])
        return dev  # type: ignore[return-value]

    def remove_device(self, device_id: str) -> None:
        """
        Delete a device together with its history and pending command.

        Alerts and the custom threshold are kept; they go only through
        :meth:`clear_alert` and :meth:`remove_threshold`.

        Raises
        ------
        NotFoundError
            If the device is unknown.
        """
        with self._device_lock(device_id):
            with self._lock:
                if not self._devices.remove(device_id):
                    raise NotFoundError(f"Device {device_id} not found")
                self._buffer.remove(device_id)
                self._pending.pop(device_id, None)
        logger.info("device %s removed", device_id)

    # --- History API ---
    def recent_points(self, device_id: str, limit: Optional[int] = None) -> List[DataPoint]:
        """Most recent points of a device, oldest first (chart feed)."""
        with self._lock:
            return self._buffer.read(device_id, limit)

    def append_point(self, device_id: str, point: DataPoint) -> DataPoint:
        """
        Backfill one history point without touching the device registry.
        """
        with self._device_lock(device_id):
            with self._lock:
                self._buffer.append(device_id, point)
        return point

    def clear_history(self, device_id: str) -> None:
        with self._lock:
            self._buffer.clear(device_id)

    def history(
        self,
        device_id: Optional[str] = None,
        from_ms: Optional[int] = None,
        to_ms: Optional[int] = None,
        page: int = 1,
        limit: int = 100,
    ) -> HistoryPage:
        """
        Paginated history, newest first, optionally for a single device.

        Parameters
        ----------
        device_id
            Restrict to one device; None merges all devices.
        from_ms, to_ms
            Inclusive timestamp bounds; None leaves the side open.
        page
            1-based page number.
        limit
            Page size.

        Raises
        ------
        ValidationError
            If ``page`` or ``limit`` is below 1.
        """
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive integers")

        with self._lock:
            ids = [device_id] if device_id is not None else self._buffer.device_ids()
            entries = [
                (dev, p)
                for dev in ids
                for p in self._buffer.read(dev)
                if _in_range(p.timestamp, from_ms, to_ms)
            ]

        entries.sort(key=lambda e: e[1].timestamp, reverse=True)
        start = (page - 1) * limit
        return HistoryPage(
            device_id=device_id,
            entries=entries[start:start + limit],
            total=len(entries),
            page=page,
            limit=limit,
        )

    # --- Thresholds API ---
    def get_threshold(self, device_id: str) -> Threshold:
        with self._lock:
            return self._thresholds.get(device_id)

    def list_thresholds(self) -> List[Threshold]:
        with self._lock:
            return self._thresholds.all()

    def set_threshold(self, device_id: str, update: Mapping[str, Any]) -> Threshold:
        """
        Merge a partial threshold update.

        Raises
        ------
        ValidationError
            If the update is malformed or leaves max <= min.
        """
        with self._lock:
            return self._thresholds.set(device_id, update)

    def reset_threshold(self, device_id: str) -> Threshold:
        with self._lock:
            return self._thresholds.reset(device_id)

    def remove_threshold(self, device_id: str) -> Threshold:
        """Drop the custom threshold and return the default now in effect."""
        with self._lock:
            self._thresholds.remove(device_id)
            return self._thresholds.get(device_id)

    # --- Alerts API ---
    def list_alerts(
        self,
        device_id: Optional[str] = None,
        acknowledged: Optional[bool] = None,
        alert_type: Optional[AlertType] = None,
    ) -> List[Alert]:
        with self._lock:
            return self._alerts.list(device_id=device_id, acknowledged=acknowledged, alert_type=alert_type)

    def unacknowledged_alerts(self) -> List[Alert]:
        with self._lock:
            return self._alerts.list_unacknowledged()

    def get_alert(self, alert_id: str) -> Alert:
        """
        Raises
        ------
        NotFoundError
            If the alert is unknown.
        """
        with self._lock:
            alert = self._alerts.get(alert_id)
        if alert is None:
            raise NotFoundError(f"Alert {alert_id} not found")
        return alert

    def create_alert(self, alert: Alert) -> Tuple[Alert, bool]:
        """
        Store an externally created alert through the same deduplication path.

        Returns
        -------
        tuple
            ``(alert, stored)``; ``stored`` is False when it was suppressed.
        """
        with self._lock:
            stored = self._alerts.raise_alert(alert)
        if stored:
            self._publish([AlertRaised(alert=alert)])
        return alert, stored

    def acknowledge_alert(self, alert_id: str) -> Optional[Alert]:
        """Acknowledge an alert; unknown ids are ignored (returns None)."""
        with self._lock:
            return self._alerts.acknowledge(alert_id)

    def clear_alert(self, alert_id: str) -> Alert:
        """
        Raises
        ------
        NotFoundError
            If the alert is unknown.
        """
        with self._lock:
            return self._alerts.clear(alert_id)

    # --- Commands API ---
    def send_command(self, device_id: str, command: CommandType) -> ControlCommand:
        """
        Build a control command and hand it to the command transport.

        ``LED_TOGGLE`` carries the inverse of the last reported LED state.

        Raises
        ------
        NotFoundError
            If the device is unknown.
        TransportError
            If no transport is configured or it refused the command.
        """
        with self._lock:
            dev = self._devices.get(device_id)
            if dev is None:
                raise NotFoundError(f"Device {device_id} not found")
            led = dev.last_reading.led_on if dev.last_reading else False

        if command is CommandType.LED_ON:
            value = True
        elif command is CommandType.LED_OFF:
            value = False
        else:
            value = not led

        cmd = ControlCommand(command=command, value=value, ts=self.clock.now_ms())

        # registered before delivery: a sink may ack synchronously
        with self._lock:
            previous = self._pending.get(device_id)
            self._pending[device_id] = cmd

        if self.command_sink is None or not self.command_sink.send_command(device_id, cmd):
            with self._lock:
                if self._pending.get(device_id) is cmd:
                    if previous is None:
                        del self._pending[device_id]
                    else:
                        self._pending[device_id] = previous
            raise TransportError(f"Command {command.value} could not be delivered to {device_id}")

        logger.info("command %s sent to %s", command.value, device_id)
        return cmd

    def handle_ack(self, device_id: str, ack: AckResponse) -> bool:
        """
        Resolve the pending command of a device.

        Returns
        -------
        bool
            True if the ack matched the pending command. Unmatched acks are
            logged and otherwise ignored.
        """
        with self._lock:
            pending = self._pending.get(device_id)
            matched = pending is not None and pending.command.value == ack.command
            if matched:
                del self._pending[device_id]

        if not matched:
            logger.warning("ack from %s for unknown command %r", device_id, ack.command)
        elif ack.success:
            logger.info("device %s acknowledged %s", device_id, ack.command)
        else:
            logger.warning("device %s failed %s: %s", device_id, ack.command, ack.message)
        return matched

    def pending_command(self, device_id: str) -> Optional[ControlCommand]:
        with self._lock:
            return self._pending.get(device_id)

    # --- Summary ---
    def stats(self) -> Dict[str, int]:
        """Counters for health checks and dashboards."""
        with self._lock:
            devices = self._devices.list()
            return {
                "devices": len(devices),
                "devicesOnline": sum(1 for d in devices if d.status is DeviceStatus.ONLINE),
                "alerts": len(self._alerts),
                "alertsUnacknowledged": len(self._alerts.list_unacknowledged()),
            }
