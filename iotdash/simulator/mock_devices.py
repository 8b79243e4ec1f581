from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from iotdash.core.clock import Clock, SystemClock
from iotdash.domain.models import AckResponse, CommandType, ControlCommand, TelemetryReading
from iotdash.runtime.periodic_task import PeriodicTask
from iotdash.transport.codec import DeviceAck, InboundMessage

logger = logging.getLogger(__name__)

TEMP_RANGE_C = (15.0, 35.0)
HUMIDITY_RANGE_PCT = (30.0, 90.0)
TEMP_STEP_C = 1.0
HUMIDITY_STEP_PCT = 2.0
DEFAULT_INTERVAL_MS = 2_000


@dataclass
class MockDevice:
    """Mutable state of one simulated device."""

    id: str
    name: str
    temperature: float
    humidity: float
    led: bool = False


def default_mock_devices() -> List[MockDevice]:
    return [
        MockDevice("ESP32_001", "Classroom Sensor 1", 25.0, 60.0, False),
        MockDevice("ESP32_002", "Classroom Sensor 2", 23.0, 55.0, False),
        MockDevice("ESP32_003", "Classroom Sensor 3", 27.0, 65.0, True),
    ]


def _clamp(v: float, bounds: tuple) -> float:
    lo, hi = bounds
    return max(lo, min(hi, v))


class MockDeviceSimulator:
    """
    Traffic generator standing in for real devices.

    Behavior
    --------
    - Every interval each mock device random-walks its temperature
      (+/- 1 C) and humidity (+/- 2 %), clamped to 15-35 C / 30-90 %,
      and emits a reading rounded to one decimal.
    - Readings go through ``emit`` exactly like decoded transport messages,
      so the engine treats the simulator as any other telemetry source.
    - As a command sink it executes LED commands for its own devices and
      emits an ack; commands for other devices are refused.

    Parameters
    ----------
    emit
        Callable receiving each generated message (usually ``inbound_q.put_nowait``).
    clock
        Time source for reading and ack timestamps.
    interval_ms
        Emission period.
    seed
        RNG seed for deterministic runs.
    devices
        Initial device states; defaults to three classroom sensors.
    stop_event
        Optional shared stop event.
    """

    def __init__(
        self,
        emit: Callable[[InboundMessage], None],
        clock: Optional[Clock] = None,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        seed: Optional[int] = None,
        devices: Optional[List[MockDevice]] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self._emit = emit
        self._clock = clock or SystemClock()
        self._rng = random.Random(seed)
        self._devices: Dict[str, MockDevice] = {d.id: d for d in (devices or default_mock_devices())}
        self._lock = threading.Lock()
        self._task = PeriodicTask(
            name="mock-devices",
            interval_s=interval_ms / 1000.0,
            tick=self.tick,
            stop_event=stop_event,
        )

    @property
    def devices(self) -> List[MockDevice]:
        with self._lock:
            return list(self._devices.values())

    def start(self) -> None:
        logger.info("mock devices started: %s", ", ".join(self._devices))
        self._task.start()

    def stop(self) -> None:
        self._task.stop()

    def join(self, timeout: float | None = 2.0) -> None:
        self._task.join(timeout=timeout)

    def tick(self) -> List[TelemetryReading]:
        """
        Advance every device one step and emit its reading.

        Returns
        -------
        list of TelemetryReading
            The readings emitted on this tick.
        """
        now = self._clock.now_ms()
        out: List[TelemetryReading] = []
        with self._lock:
            for d in self._devices.values():
                d.temperature = _clamp(d.temperature + self._rng.uniform(-TEMP_STEP_C, TEMP_STEP_C), TEMP_RANGE_C)
                d.humidity = _clamp(
                    d.humidity + self._rng.uniform(-HUMIDITY_STEP_PCT, HUMIDITY_STEP_PCT), HUMIDITY_RANGE_PCT
                )
                out.append(
                    TelemetryReading(
                        device_id=d.id,
                        timestamp=now,
                        temperature=round(d.temperature, 1),
                        humidity=round(d.humidity, 1),
                        led_on=d.led,
                    )
                )

        for reading in out:
            self._emit(reading)
        return out

    def send_command(self, device_id: str, command: ControlCommand) -> bool:
        """
        Execute a command on a mock device and emit the ack.

        Returns
        -------
        bool
            False if ``device_id`` is not simulated here.
        """
        with self._lock:
            d = self._devices.get(device_id)
            if d is None:
                return False
            if command.command is CommandType.LED_ON:
                d.led = True
            elif command.command is CommandType.LED_OFF:
                d.led = False
            else:
                d.led = not d.led

        ack = AckResponse(
            command=command.command.value,
            success=True,
            ts=self._clock.now_ms(),
            message=f"Command {command.command.value} executed successfully",
        )
        self._emit(DeviceAck(device_id=device_id, ack=ack))
        return True
