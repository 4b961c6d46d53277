"""MQTT publish sink and control-topic listener."""

from ._publisher import MqttPublisher, QueuedPublish, parse_control_payload

__all__ = [
    "MqttPublisher",
    "QueuedPublish",
    "parse_control_payload",
]
