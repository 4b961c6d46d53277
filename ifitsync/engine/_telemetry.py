from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..client.protocol import ACTIVE_MODES, Mode, enum_label
from ._debounce import DebounceTracker
from ._models import EquipmentCapabilities, TelemetrySnapshot
from ._units import (
    STANDSTILL_EPSILON,
    calibrate_speed,
    device_speed_to_display,
    distance_unit,
    incline_to_display,
    speed_unit,
)

LOGGER = logging.getLogger(__name__)


def format_number(value: float) -> str:
    """Shortest plain rendering of a bound: ``1.0`` -> ``1``, ``12.5`` -> ``12.5``."""
    return f"{value:g}"


class Publisher(Protocol):
    """Outbound sink for telemetry. Fire-and-forget."""

    def publish(self, topic: str, value: str, *, retain: bool = False) -> None: ...


@dataclass(frozen=True)
class TelemetryEvent:
    """One normalized (topic, value) pair, topic relative to the base topic."""

    topic: str
    value: str
    retain: bool = False


@dataclass
class CycleTelemetry:
    """Everything one poll cycle produces for the outside world."""

    events: list[TelemetryEvent] = field(default_factory=list)
    changes: dict[str, Any] = field(default_factory=dict)

    def add(self, topic: str, value: object, *, retain: bool = False) -> None:
        self.events.append(TelemetryEvent(topic, str(value), retain))


class TelemetryPublisher:
    """Map decoded poll results to topic/value events and push them to a Publisher."""

    def __init__(
        self,
        publisher: Publisher,
        *,
        base_topic: str = "devices/ifitsync",
        metric: bool = True,
        speed_offset: float = 0.0,
        speed_multiplier: float = 1.0,
        tracker: DebounceTracker | None = None,
    ) -> None:
        self._publisher = publisher
        self.base_topic = base_topic.rstrip("/")
        self.metric = metric
        self.speed_offset = speed_offset
        self.speed_multiplier = speed_multiplier
        self.tracker = tracker or DebounceTracker()

    @property
    def speed_key(self) -> str:
        return "kph" if self.metric else "mph"

    def display_speed(self, snapshot: TelemetrySnapshot, device_metric: bool) -> float:
        speed = device_speed_to_display(snapshot.speed_kph, device_metric, self.metric)
        if speed < STANDSTILL_EPSILON:
            return 0.0
        return calibrate_speed(speed, self.speed_offset, self.speed_multiplier)

    def build(self, snapshot: TelemetrySnapshot, device_metric: bool) -> CycleTelemetry:
        """Translate one snapshot into events and a changes record, updating debounce memory."""
        cycle = CycleTelemetry()
        mode = snapshot.mode

        if mode in ACTIVE_MODES:
            cycle.add("mode", enum_label(mode))
            speed = self.display_speed(snapshot, device_metric)
            cycle.changes[self.speed_key] = speed
            cycle.add("speed", f"{speed:.2f}")
            cycle.add("speed/$unit", speed_unit(self.metric))
            cycle.add("distance", f"{snapshot.distance:.0f}")
            cycle.add("distance/$unit", distance_unit(self.metric))
            cycle.add("calories", f"{snapshot.calories:.2f}")
            cycle.add("calories/$unit", "kcal")
            incline = incline_to_display(snapshot.incline)
            cycle.changes["incline"] = incline
            cycle.add("incline", f"{incline:.1f}")
            cycle.add("incline/$unit", "%")
            self.tracker.enter_active(mode)
        else:
            if self.tracker.claim_zero_speed():
                cycle.add("speed", "0.0")
                cycle.changes[self.speed_key] = 0.0
            if self.tracker.claim_mode_change(mode):
                cycle.add("mode", enum_label(mode))

        if mode != Mode.IDLE:
            if self.tracker.claim_pulse(snapshot.pulse):
                cycle.changes["hr"] = snapshot.pulse.value
                cycle.add("heart-rate/pulse", snapshot.pulse.value)
                cycle.add("heart-rate/source", enum_label(snapshot.pulse.source))
            cycle.add("total-time", f"{snapshot.total_time:.0f}")
            cycle.add("total-time/$unit", "s")
            cycle.add("paused-time", f"{snapshot.paused_time:.0f}")
            cycle.add("paused-time/$unit", "s")
            cycle.add("capabilities/min-kmph", format_number(snapshot.min_kph))
            cycle.add("capabilities/max-kmph", format_number(snapshot.max_kph))
        return cycle

    def emit(self, events: list[TelemetryEvent]) -> None:
        for event in events:
            self.publish(event.topic, event.value, retain=event.retain)

    def publish(self, topic: str, value: object, *, retain: bool = False) -> None:
        self._publisher.publish(f"{self.base_topic}/{topic}", str(value), retain=retain)

    def publish_status(self, online: bool) -> None:
        self.publish("status", "online" if online else "offline", retain=True)

    def publish_device(self, name: str | None, code: str) -> None:
        if name:
            self.publish("ble-devicename", name)
        self.publish("ble-code", code)

    def publish_mode(self, mode: Mode) -> None:
        self.publish("mode", enum_label(mode))

    def publish_capabilities(self, capabilities: EquipmentCapabilities) -> None:
        metric = str(capabilities.uses_metric_units).lower()
        self.publish("capabilities/metric", metric, retain=True)
        bounds = {
            "min-kmph": capabilities.min_kph,
            "max-kmph": capabilities.max_kph,
            "min-incline": capabilities.min_incline,
            "max-incline": capabilities.max_incline,
        }
        for name, value in bounds.items():
            self.publish(f"capabilities/{name}", format_number(value), retain=True)
        self.publish("capabilities/max-pulse", capabilities.max_pulse, retain=True)
