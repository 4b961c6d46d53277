from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Iterable
from typing import Any

from bleak.exc import BleakError

from ..engine._models import IOResult
from ..errors import (
    ActivationError,
    DisconnectedDuringPoll,
    TransientReadWriteFailure,
    TransportUnavailable,
)
from ._client import IFitLink
from ._scanner import IFitDevice, scan_ifit_devices
from .protocol import EquipmentInformation, WriteValue

LOGGER = logging.getLogger(__name__)


class BleTransport:
    """Transport capability for the session engine, backed by bleak."""

    def __init__(self, *, scan_window: float = 10.0, response_timeout: float = 10.0) -> None:
        self.scan_window = scan_window
        self.response_timeout = response_timeout

    def scan(self, matcher: Callable[[bytes], bool]) -> AsyncIterator[IFitDevice]:
        return scan_ifit_devices(matcher, window=self.scan_window)

    async def connect(self, peer: IFitDevice) -> IFitLink:
        link = IFitLink(peer.device or peer.address, response_timeout=self.response_timeout)
        try:
            await link.connect()
        except (BleakError, TimeoutError, OSError, ValueError) as e:
            raise TransportUnavailable(f"Could not connect to {peer.address}: {e}") from e
        return link

    def on_disconnect(self, link: IFitLink, callback: Callable[[], None]) -> None:
        link.add_disconnect_callback(callback)

    async def disconnect(self, link: IFitLink) -> None:
        try:
            await link.disconnect()
        except BleakError as e:
            LOGGER.warning("Disconnect from %s failed: %s", link.address, e)

    async def fetch_equipment_information(self, link: IFitLink) -> IOResult[EquipmentInformation]:
        return await self._call(link, link.load_equipment_information())

    async def fetch_supported_capabilities(
        self, link: IFitLink, info: EquipmentInformation
    ) -> IOResult[list[int]]:
        return await self._call(link, link.load_supported_capabilities())

    async def enable(
        self, link: IFitLink, info: EquipmentInformation, activation_code: str | None
    ) -> IOResult[None]:
        if activation_code is None:
            LOGGER.info("No activation code configured, skipping enable")
            return IOResult.ok()
        return await self._call(link, link.enable(activation_code))

    async def read_write(
        self,
        link: IFitLink,
        writes: Iterable[WriteValue] | None,
        reads: Iterable[str],
    ) -> IOResult[dict[str, Any]]:
        return await self._call(link, link.write_and_read(writes, reads))

    @staticmethod
    async def _call(link: IFitLink, operation: Any) -> IOResult[Any]:
        """Await ``operation`` and classify its outcome; a dropped link wins over anything else."""
        try:
            value = await operation
        except (BleakError, OSError, TimeoutError, ValueError, ActivationError) as e:
            if not link.is_connected:
                return IOResult.disconnected(DisconnectedDuringPoll(str(e) or type(e).__name__))
            return IOResult.transient(TransientReadWriteFailure(str(e) or type(e).__name__))
        return IOResult.ok(value)
