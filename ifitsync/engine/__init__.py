"""Equipment session engine: lifecycle, polling, control arbitration and telemetry."""

from ._arbiter import ControlArbiter, PendingControl
from ._debounce import DebounceMemory, DebounceTracker
from ._models import (
    ControlRequest,
    EquipmentCapabilities,
    IOResult,
    IOStatus,
    SessionState,
    SessionStatus,
    TelemetrySnapshot,
)
from ._session import EquipmentSession, Peer, Transport, advertisement_matcher
from ._telemetry import CycleTelemetry, Publisher, TelemetryEvent, TelemetryPublisher
from ._units import (
    KPH_PER_MPH_FACTOR,
    calibrate_speed,
    device_speed_to_display,
    display_speed_to_device,
    safe_float,
)

__all__ = [
    "KPH_PER_MPH_FACTOR",
    "ControlArbiter",
    "ControlRequest",
    "CycleTelemetry",
    "DebounceMemory",
    "DebounceTracker",
    "EquipmentCapabilities",
    "EquipmentSession",
    "IOResult",
    "IOStatus",
    "PendingControl",
    "Peer",
    "Publisher",
    "SessionState",
    "SessionStatus",
    "TelemetryEvent",
    "TelemetryPublisher",
    "TelemetrySnapshot",
    "Transport",
    "advertisement_matcher",
    "calibrate_speed",
    "device_speed_to_display",
    "display_speed_to_device",
    "safe_float",
]
