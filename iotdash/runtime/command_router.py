from __future__ import annotations

from typing import List

from iotdash.core.state_engine import CommandSink
from iotdash.domain.models import ControlCommand


class CommandRouter:
    """
    Command sink that offers a command to several transports in order.

    The first sink that accepts the command wins, so the simulator can claim
    its own devices and everything else falls through to MQTT.
    """

    def __init__(self, sinks: List[CommandSink]):
        self._sinks = list(sinks)

    def send_command(self, device_id: str, command: ControlCommand) -> bool:
        for sink in self._sinks:
            if sink.send_command(device_id, command):
                return True
        return False
