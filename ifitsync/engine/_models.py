from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from ..client.protocol import (
    EquipmentInformation,
    Mode,
    PulseReading,
    SportsEquipment,
    decode_mode,
)
from ._units import safe_float

T = TypeVar("T")


class SessionState(Enum):
    """Lifecycle state of the single managed equipment session."""

    DISCONNECTED = "disconnected"
    DISCOVERING = "discovering"
    CONNECTING = "connecting"
    BOOTSTRAPPING = "bootstrapping"
    POLLING = "polling"


class IOStatus(Enum):
    """Outcome classification of a transport exchange."""

    OK = "ok"
    TRANSIENT = "transient"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class IOResult(Generic[T]):
    """Result of one transport exchange: a value, a transient failure or a disconnect."""

    status: IOStatus
    value: T | None = None
    error: BaseException | str | None = None

    @classmethod
    def ok(cls, value: T | None = None) -> IOResult[T]:
        return cls(IOStatus.OK, value)

    @classmethod
    def transient(cls, error: BaseException | str | None = None) -> IOResult[T]:
        return cls(IOStatus.TRANSIENT, error=error)

    @classmethod
    def disconnected(cls, error: BaseException | str | None = None) -> IOResult[T]:
        return cls(IOStatus.DISCONNECTED, error=error)

    @property
    def is_ok(self) -> bool:
        return self.status is IOStatus.OK


@dataclass(frozen=True)
class EquipmentCapabilities:
    """Capability bounds and supported characteristics of the connected equipment.

    Built step by step during bootstrap; every step produces a new instance
    with ``dataclasses.replace``.
    """

    equipment: SportsEquipment | int = SportsEquipment.GENERAL
    uses_metric_units: bool = True
    min_kph: float = 0.0
    max_kph: float = 0.0
    min_incline: float = 0.0
    max_incline: float = 0.0
    max_pulse: int = 0
    characteristics: frozenset[int] = field(default_factory=frozenset)
    supported_capabilities: tuple[int, ...] = ()

    @classmethod
    def from_information(cls, info: EquipmentInformation) -> EquipmentCapabilities:
        return cls(
            equipment=info.equipment,
            characteristics=frozenset(info.characteristics),
            supported_capabilities=tuple(info.supported_capabilities),
        )

    def bounds_from_values(self, values: Mapping[str, Any]) -> dict[str, Any]:
        """Map a bounds read result onto field names for ``dataclasses.replace``."""
        return {
            "max_incline": safe_float(values.get("MaxIncline")),
            "min_incline": safe_float(values.get("MinIncline")),
            "max_kph": safe_float(values.get("MaxKph")),
            "min_kph": safe_float(values.get("MinKph")),
            "max_pulse": int(safe_float(values.get("MaxPulse"))),
            "uses_metric_units": bool(values.get("Metric", self.uses_metric_units)),
        }


@dataclass(frozen=True)
class SessionStatus:
    """Read-only view of the session handed to external callers."""

    connected: bool = False
    mode: Mode = Mode.IDLE
    state: SessionState = SessionState.DISCONNECTED


@dataclass(frozen=True)
class TelemetrySnapshot:
    """Decoded values of one poll cycle, in device-native units."""

    mode: Mode
    speed_kph: float = 0.0
    incline: float = 0.0
    distance: float = 0.0
    calories: float = 0.0
    total_time: float = 0.0
    paused_time: float = 0.0
    pulse: PulseReading = field(default_factory=PulseReading)
    min_kph: float = 0.0
    max_kph: float = 0.0

    @classmethod
    def from_values(cls, values: Mapping[str, Any]) -> TelemetrySnapshot:
        pulse = values.get("Pulse")
        return cls(
            mode=decode_mode(values.get("Mode")),
            speed_kph=safe_float(values.get("CurrentKph")),
            incline=safe_float(values.get("CurrentIncline")),
            distance=safe_float(values.get("CurrentDistance")),
            calories=safe_float(values.get("CurrentCalories")),
            total_time=safe_float(values.get("TotalTime")),
            paused_time=safe_float(values.get("PausedTime")),
            pulse=pulse if isinstance(pulse, PulseReading) else PulseReading(),
            min_kph=safe_float(values.get("MinKph")),
            max_kph=safe_float(values.get("MaxKph")),
        )


class ControlRequest(BaseModel):
    """External request for a new target speed and/or incline.

    Speed is given in either ``kph`` or ``mph``; ``kph`` wins when both are set.
    Incline may arrive as ``incline`` or ``zwiftIncline``; the first non-empty
    one is used.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    kph: float | str | None = None
    mph: float | str | None = None
    incline: float | str | None = None
    zwift_incline: float | str | None = Field(default=None, alias="zwiftIncline")

    @property
    def requested_incline(self) -> float | None:
        for value in (self.incline, self.zwift_incline):
            if value is not None and value != "":
                return safe_float(value)
        return None
