from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from ..errors import TransportUnavailable
from .protocol import displayed_code, is_ifit_advertisement

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class IFitDevice:
    """Metadata for a discovered iFit device."""

    address: str
    name: str | None
    manufacturer_data: bytes
    code: str
    manufacturer_company_id: int | None = None
    device: BLEDevice | None = None


def _match_advertisement(
    device: BLEDevice,
    adv_data: AdvertisementData,
    matcher: Callable[[bytes], bool],
) -> IFitDevice | None:
    for company_id, payload in adv_data.manufacturer_data.items():
        if is_ifit_advertisement(payload) and matcher(payload):
            return IFitDevice(
                address=device.address,
                name=device.name or adv_data.local_name,
                manufacturer_data=payload,
                code=displayed_code(payload),
                manufacturer_company_id=company_id,
                device=device,
            )
    return None


async def scan_ifit_devices(
    matcher: Callable[[bytes], bool],
    *,
    window: float = 10.0,
) -> AsyncIterator[IFitDevice]:
    """Yield matching iFit devices as they advertise, scanning until the caller stops iterating.

    Scanning runs in windows of ``window`` seconds; each address is reported
    at most once per window.
    """
    while True:
        found: asyncio.Queue[IFitDevice] = asyncio.Queue()
        seen: set[str] = set()

        def detection_callback(device: BLEDevice, adv_data: AdvertisementData) -> None:
            if device.address in seen:
                return
            match = _match_advertisement(device, adv_data, matcher)
            if match:
                seen.add(device.address)
                found.put_nowait(match)

        try:
            async with BleakScanner(detection_callback=detection_callback):
                deadline = asyncio.get_running_loop().time() + window
                while True:
                    remaining = deadline - asyncio.get_running_loop().time()
                    if remaining <= 0:
                        break
                    try:
                        match = await asyncio.wait_for(found.get(), timeout=remaining)
                    except TimeoutError:
                        break
                    yield match
        except BleakError as e:
            raise TransportUnavailable(f"BLE scan failed: {e}") from e
        LOGGER.debug("No matching advertisement in the last %.0fs, scanning again", window)


async def find_all_ifit_devices(timeout: float = 10.0) -> list[IFitDevice]:
    """Scan for all iFit devices in range."""
    ifit_devices = []

    devices = await BleakScanner.discover(timeout=timeout, return_adv=True)
    for device, adv_data in devices.values():
        match = _match_advertisement(device, adv_data, is_ifit_advertisement)
        if match:
            ifit_devices.append(match)

    return ifit_devices
