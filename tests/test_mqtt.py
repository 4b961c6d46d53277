"""Tests for the MQTT publisher's queueing and control handling."""

import pytest

from ifitsync.config import MqttSettings
from ifitsync.engine import ControlRequest
from ifitsync.mqtt import MqttPublisher, QueuedPublish, parse_control_payload


@pytest.mark.unit
def test_parse_control_payload():
    request = parse_control_payload(b'{"mph": 3.5, "zwiftIncline": 2, "extra": true}')
    assert request.mph == 3.5
    assert request.requested_incline == 2.0


@pytest.mark.unit
@pytest.mark.parametrize("payload", ["[1, 2]", "not json", '"kph"'])
def test_parse_control_payload_rejects_non_objects(payload):
    with pytest.raises(ValueError):
        parse_control_payload(payload)


@pytest.mark.unit
def test_dispatch_control_forwards_valid_requests():
    received = []
    publisher = MqttPublisher(MqttSettings())
    publisher.set_control_handler(received.append)

    publisher.dispatch_control(b'{"kph": 8}')
    publisher.dispatch_control(b"garbage")
    publisher.dispatch_control(b'{"kph": {"nested": 1}}')

    assert received == [ControlRequest(kph=8)]


@pytest.mark.unit
def test_dispatch_without_handler_is_a_no_op():
    MqttPublisher(MqttSettings()).dispatch_control(b'{"kph": 8}')


@pytest.mark.unit
def test_full_queue_drops_messages():
    publisher = MqttPublisher(MqttSettings(queue_size=1))
    publisher.publish("devices/ifitsync/speed", "1.00")
    publisher.publish("devices/ifitsync/speed", "2.00")

    assert publisher.dropped_messages == 1
    assert publisher._queue.get_nowait() == QueuedPublish("devices/ifitsync/speed", "1.00")


@pytest.mark.unit
def test_status_topic():
    publisher = MqttPublisher(MqttSettings(base_topic="gym/treadmill"))
    assert publisher.status_topic == "gym/treadmill/status"
