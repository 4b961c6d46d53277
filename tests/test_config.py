"""Tests for settings validation and CLI overrides."""

import argparse
import json

import pytest
from pydantic import ValidationError

from ifitsync.cli._run import load_settings
from ifitsync.config import MqttSettings, Settings


def _args(**overrides):
    defaults = {
        "config": None,
        "code": None,
        "activation": None,
        "interval": None,
        "imperial": False,
        "mqtt_host": None,
        "mqtt_port": None,
    }
    defaults.update(overrides)
    return argparse.Namespace(**defaults)


@pytest.mark.unit
def test_defaults():
    settings = Settings()
    assert settings.metric is True
    assert settings.poll_interval == 0.5
    assert settings.mqtt.base_topic == "devices/ifitsync"
    assert settings.mqtt.resolved_control_topic == "devices/ifitsync/control"


@pytest.mark.unit
def test_ble_code_is_normalized():
    assert Settings(ble_code=" 1A2B ").ble_code == "1a2b"


@pytest.mark.unit
@pytest.mark.parametrize("code", ["123", "12345", "zzzz"])
def test_invalid_ble_code(code):
    with pytest.raises(ValidationError):
        Settings(ble_code=code)


@pytest.mark.unit
def test_invalid_activation_code():
    with pytest.raises(ValidationError):
        Settings(activation_code="not hex")


@pytest.mark.unit
def test_reconnect_max_delay_must_cover_base_delay():
    with pytest.raises(ValidationError):
        Settings(reconnect_delay=10.0, reconnect_max_delay=5.0)


@pytest.mark.unit
def test_base_topic_is_trimmed():
    mqtt = MqttSettings(base_topic="/home/treadmill/", control_topic="zwift/treadmill")
    assert mqtt.base_topic == "home/treadmill"
    assert mqtt.resolved_control_topic == "zwift/treadmill"


@pytest.mark.unit
def test_load_from_file(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"ble_code": "50dd", "mqtt": {"hostname": "broker.lan"}}))
    settings = Settings.load(path)
    assert settings.ble_code == "50dd"
    assert settings.mqtt.hostname == "broker.lan"


@pytest.mark.unit
def test_command_line_overrides_file(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"ble_code": "50dd", "poll_interval": 2.0}))
    settings = load_settings(
        _args(config=str(path), code="AB12", imperial=True, mqtt_host="localhost")
    )
    assert settings.ble_code == "ab12"
    assert settings.poll_interval == 2.0
    assert settings.metric is False
    assert settings.mqtt.hostname == "localhost"
    assert settings.mqtt.port == 1883


@pytest.mark.unit
def test_invalid_override_is_rejected():
    with pytest.raises(ValidationError):
        load_settings(_args(interval=0))
