"""
MQTT topic layout shared by the bridge, the codec and the device firmware.

Attributes
----------
TOPIC_PREFIX
    Common prefix of every device topic.
TELEMETRY_SUBSCRIPTION
    Wildcard subscription for device telemetry.
ACK_SUBSCRIPTION
    Wildcard subscription for command acknowledgments.
SERVER_STATUS_TOPIC
    Retained topic carrying the server online/offline status (also the last will).
"""

from __future__ import annotations

TOPIC_PREFIX: str = "iot/classroom"
TELEMETRY_SUBSCRIPTION: str = f"{TOPIC_PREFIX}/+/telemetry"
ACK_SUBSCRIPTION: str = f"{TOPIC_PREFIX}/+/ack"
SERVER_STATUS_TOPIC: str = f"{TOPIC_PREFIX}/server/status"


def telemetry_topic(device_id: str) -> str:
    return f"{TOPIC_PREFIX}/{device_id}/telemetry"


def ack_topic(device_id: str) -> str:
    return f"{TOPIC_PREFIX}/{device_id}/ack"


def control_topic(device_id: str) -> str:
    return f"{TOPIC_PREFIX}/{device_id}/control"
