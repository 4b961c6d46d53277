"""ifitsync.

Bridges iFit-enabled fitness equipment, reached over Bluetooth Low Energy,
to an MQTT topic tree: telemetry goes out, speed/incline requests come in.
"""

from .client import (
    BleTransport,
    IFitDevice,
    IFitLink,
    find_all_ifit_devices,
    scan_ifit_devices,
)
from .client.protocol import (
    EquipmentInformation,
    Mode,
    PulseReading,
    PulseSource,
    SportsEquipment,
    WriteValue,
)
from .config import MqttSettings, Settings
from .engine import (
    ControlRequest,
    EquipmentCapabilities,
    EquipmentSession,
    SessionState,
    SessionStatus,
)
from .errors import (
    ActivationError,
    BootstrapStepFailed,
    DisconnectedDuringPoll,
    IFitSyncError,
    TransientReadWriteFailure,
    TransportUnavailable,
)
from .mqtt import MqttPublisher

__version__ = "0.1.0"

__all__ = [
    "ActivationError",
    "BleTransport",
    "BootstrapStepFailed",
    "ControlRequest",
    "DisconnectedDuringPoll",
    "EquipmentCapabilities",
    "EquipmentInformation",
    "EquipmentSession",
    "IFitDevice",
    "IFitLink",
    "IFitSyncError",
    "Mode",
    "MqttPublisher",
    "MqttSettings",
    "PulseReading",
    "PulseSource",
    "SessionState",
    "SessionStatus",
    "Settings",
    "SportsEquipment",
    "TransientReadWriteFailure",
    "TransportUnavailable",
    "WriteValue",
    "find_all_ifit_devices",
    "scan_ifit_devices",
]
