"""Runtime configuration for the ifitsync bridge."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator


class MqttSettings(BaseModel):
    """Connection and topic settings for the MQTT publisher."""

    hostname: str = "mqttbroker"
    port: int = Field(default=1883, gt=0, lt=65536)
    client_id: str = "ifitsync"
    username: str | None = None
    password: str | None = None
    base_topic: str = "devices/ifitsync"
    control_topic: str | None = None
    queue_size: int = Field(default=1000, gt=0)
    reconnect_delay: float = Field(default=5.0, gt=0.0)

    @field_validator("base_topic")
    @classmethod
    def _strip_base_topic(cls, value: str) -> str:
        value = value.strip("/")
        if not value:
            raise ValueError("base_topic must not be empty")
        return value

    @property
    def resolved_control_topic(self) -> str:
        return self.control_topic or f"{self.base_topic}/control"


class Settings(BaseModel):
    """Bridge settings.

    ``ble_code`` is the 4-character code shown on the equipment, used to pick
    its advertisement. ``metric`` selects the display units of the published
    telemetry; ``speed_offset`` and ``speed_multiplier`` correct calibration
    drift of the reported speed (offset first).
    """

    ble_code: str | None = None
    ble_device_name: str | None = None
    activation_code: str | None = None
    metric: bool = True
    speed_offset: float = 0.0
    speed_multiplier: float = Field(default=1.0, gt=0.0)
    poll_interval: float = Field(default=0.5, gt=0.0)
    startup_delay: float = Field(default=2.0, ge=0.0)
    reconnect_delay: float = Field(default=2.0, gt=0.0)
    reconnect_max_delay: float = Field(default=60.0, gt=0.0)
    scan_timeout: float = Field(default=10.0, gt=0.0)
    mqtt: MqttSettings = Field(default_factory=MqttSettings)

    @field_validator("ble_code")
    @classmethod
    def _validate_ble_code(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip().lower()
        if len(cleaned) != 4 or any(c not in "0123456789abcdef" for c in cleaned):
            raise ValueError("BLE code must be a 4-character hex string")
        return cleaned

    @field_validator("activation_code")
    @classmethod
    def _validate_activation_code(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip().lower()
        bytes.fromhex(cleaned)
        return cleaned

    @model_validator(mode="after")
    def _check_reconnect_delays(self) -> Settings:
        if self.reconnect_max_delay < self.reconnect_delay:
            raise ValueError("reconnect_max_delay must not be smaller than reconnect_delay")
        return self

    @classmethod
    def load(cls, path: str | Path) -> Settings:
        """Load settings from a JSON file."""
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))
