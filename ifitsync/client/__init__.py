"""iFit BLE link, transport and protocol codec.

For protocol definitions, import from ifitsync.client.protocol:
    from ifitsync.client.protocol import Mode, PulseSource, WriteValue, etc.
"""

from ._client import IFitLink
from ._scanner import IFitDevice, find_all_ifit_devices, scan_ifit_devices
from ._transport import BleTransport
from .protocol import (
    EquipmentInformation,
    Mode,
    PulseReading,
    PulseSource,
    SportsEquipment,
    WriteValue,
)

__all__ = [
    "BleTransport",
    "EquipmentInformation",
    "IFitDevice",
    "IFitLink",
    "Mode",
    "PulseReading",
    "PulseSource",
    "SportsEquipment",
    "WriteValue",
    "find_all_ifit_devices",
    "scan_ifit_devices",
]
