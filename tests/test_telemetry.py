"""Tests for telemetry event building and debouncing."""

import pytest
from conftest import BASE_TOPIC, RecordingPublisher, poll_values

from ifitsync.client.protocol import Mode, PulseSource
from ifitsync.engine import TelemetryPublisher, TelemetrySnapshot


def _telemetry(**kwargs):
    publisher = RecordingPublisher()
    return TelemetryPublisher(publisher, base_topic=BASE_TOPIC, **kwargs), publisher


def _build(telemetry, device_metric=True, **values):
    return telemetry.build(TelemetrySnapshot.from_values(poll_values(**values)), device_metric)


def _events(cycle):
    return {event.topic: event.value for event in cycle.events}


@pytest.mark.unit
def test_running_cycle_in_imperial_display():
    """10 km/h from a metric device is published as 6.21 mi/h."""
    telemetry, _ = _telemetry(metric=False)
    cycle = _build(telemetry, kph=10.0, incline=2.0)
    events = _events(cycle)

    assert events["mode"] == "Active"
    assert events["speed"] == "6.21"
    assert events["speed/$unit"] == "mi/h"
    assert events["distance/$unit"] == "ft"
    assert events["incline"] == "2.0"
    assert events["incline/$unit"] == "%"
    assert cycle.changes["mph"] == pytest.approx(6.21)
    assert cycle.changes["incline"] == 2.0


@pytest.mark.unit
def test_active_cycle_topic_order():
    telemetry, _ = _telemetry()
    topics = [event.topic for event in _build(telemetry).events]
    assert topics[:10] == [
        "mode",
        "speed",
        "speed/$unit",
        "distance",
        "distance/$unit",
        "calories",
        "calories/$unit",
        "incline",
        "incline/$unit",
        "heart-rate/pulse",
    ]


@pytest.mark.unit
def test_idle_after_running_publishes_zero_speed_and_mode_once():
    telemetry, _ = _telemetry()
    _build(telemetry, mode=Mode.RUNNING)

    first = _build(telemetry, mode=Mode.IDLE, kph=0.0)
    assert [(e.topic, e.value) for e in first.events] == [("speed", "0.0"), ("mode", "Idle")]
    assert first.changes == {"kph": 0.0}

    second = _build(telemetry, mode=Mode.IDLE, kph=0.0)
    assert second.events == []
    assert second.changes == {}


@pytest.mark.unit
def test_zero_speed_is_published_again_after_a_new_active_span():
    telemetry, _ = _telemetry()
    _build(telemetry, mode=Mode.ACTIVE)
    _build(telemetry, mode=Mode.PAUSE)
    _build(telemetry, mode=Mode.ACTIVE)

    cycle = _build(telemetry, mode=Mode.PAUSE)
    assert ("speed", "0.0") in [(e.topic, e.value) for e in cycle.events]
    assert ("mode", "Pause") in [(e.topic, e.value) for e in cycle.events]


@pytest.mark.unit
def test_paused_cycle_still_reports_times_and_bounds():
    telemetry, _ = _telemetry()
    events = _events(_build(telemetry, mode=Mode.PAUSE))
    assert events["total-time"] == "120"
    assert events["paused-time"] == "5"
    assert events["capabilities/min-kmph"] == "1"
    assert events["capabilities/max-kmph"] == "20"
    assert "incline" not in events


@pytest.mark.unit
def test_speed_below_standstill_threshold_is_zero_without_calibration():
    telemetry, _ = _telemetry(speed_offset=1.0, speed_multiplier=2.0)
    events = _events(_build(telemetry, kph=0.05))
    assert events["speed"] == "0.00"


@pytest.mark.unit
def test_calibration_is_applied_to_moving_speed():
    telemetry, _ = _telemetry(speed_offset=1.0, speed_multiplier=2.0)
    events = _events(_build(telemetry, kph=5.0))
    assert events["speed"] == "12.00"


@pytest.mark.unit
def test_heart_rate_grace_window():
    """Absent pulse is published once after a real reading, then suppressed."""
    telemetry, _ = _telemetry()

    present = _build(telemetry, pulse=120, source=PulseSource.HAND)
    assert _events(present)["heart-rate/pulse"] == "120"
    assert _events(present)["heart-rate/source"] == "Hand"
    assert present.changes["hr"] == 120

    gone = _build(telemetry, pulse=0, source=PulseSource.NO)
    assert _events(gone)["heart-rate/pulse"] == "0"
    assert _events(gone)["heart-rate/source"] == "No"

    still_gone = _build(telemetry, pulse=0, source=PulseSource.NO)
    assert "heart-rate/pulse" not in _events(still_gone)
    assert "hr" not in still_gone.changes

    back = _build(telemetry, pulse=95, source=PulseSource.BLE)
    assert _events(back)["heart-rate/pulse"] == "95"


@pytest.mark.unit
def test_idle_cycles_never_report_heart_rate():
    telemetry, _ = _telemetry()
    events = _events(_build(telemetry, mode=Mode.IDLE, pulse=80, source=PulseSource.HAND))
    assert "heart-rate/pulse" not in events
    assert "total-time" not in events


@pytest.mark.unit
def test_unknown_mode_value_decodes_to_unknown():
    snapshot = TelemetrySnapshot.from_values({"Mode": 42})
    assert snapshot.mode is Mode.UNKNOWN


@pytest.mark.unit
def test_publish_prefixes_base_topic():
    telemetry, publisher = _telemetry()
    telemetry.publish_status(True)
    telemetry.publish_device("I_TL", "1a2b")
    assert publisher.messages == [
        (f"{BASE_TOPIC}/status", "online", True),
        (f"{BASE_TOPIC}/ble-devicename", "I_TL", False),
        (f"{BASE_TOPIC}/ble-code", "1a2b", False),
    ]
