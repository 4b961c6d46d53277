from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from bleak import BleakClient
from bleak.backends.device import BLEDevice

from ..errors import ActivationError
from .protocol import (
    BLE_UUIDS,
    Command,
    EquipmentInformation,
    MessageIndex,
    SportsEquipment,
    WriteValue,
    build_request,
    build_write_and_read_payload,
    build_write_messages,
    determine_message_index,
    fill_response,
    get_header_from_response,
    parse_command_header,
    parse_equipment_information_response,
    parse_features_response,
    parse_write_and_read_response,
    resolve_characteristics,
    validate_checksum,
)

LOGGER = logging.getLogger(__name__)

# Delay between BLE chunks of one request; the equipment drops writes sent back to back.
WRITE_THROTTLE = 0.2
SERVICE_SETTLE_DELAY = 0.6


@dataclass
class _ResponseState:
    """Track in-flight response assembly state."""

    upcoming_messages: int = -1
    buffer: bytearray | None = None


class IFitLink:
    """One BLE connection to iFit equipment, speaking the framed request/response protocol."""

    def __init__(
        self,
        device: BLEDevice | str,
        *,
        response_timeout: float = 10.0,
    ) -> None:
        self.response_timeout = response_timeout
        self._client = BleakClient(device, disconnected_callback=self._on_disconnected)
        self._disconnect_callbacks: list[Callable[[], None]] = []
        self._equipment_information: EquipmentInformation | None = None
        self._response_lock = asyncio.Lock()
        self._response_future: asyncio.Future[bytes] | None = None
        self._response_state = _ResponseState()

    @property
    def address(self) -> str:
        return self._client.address

    @property
    def is_connected(self) -> bool:
        return self._client.is_connected

    @property
    def equipment_information(self) -> EquipmentInformation | None:
        return self._equipment_information

    def add_disconnect_callback(self, callback: Callable[[], None]) -> None:
        self._disconnect_callbacks.append(callback)

    def _on_disconnected(self, _: BleakClient) -> None:
        LOGGER.debug("Link to %s dropped", self.address)
        if self._response_future and not self._response_future.done():
            self._response_future.set_exception(ConnectionError("disconnected"))
        for callback in list(self._disconnect_callbacks):
            callback()

    async def connect(self) -> None:
        """Connect, check for the iFit rx/tx characteristics and subscribe to responses."""
        await self._client.connect()

        # Wait for services to stabilize after connection (device may reconfigure)
        await asyncio.sleep(SERVICE_SETTLE_DELAY)

        required_uuids = {BLE_UUIDS["rx"], BLE_UUIDS["tx"]}
        available_uuids = {
            char.uuid.replace("-", "")
            for service in self._client.services
            for char in service.characteristics
        }
        if not required_uuids.issubset(available_uuids):
            missing = required_uuids - available_uuids
            await self._client.disconnect()
            raise ValueError(f"Device is not a valid iFit device. Missing UUIDs: {missing}")

        await self._client.start_notify(
            BLE_UUIDS["rx"],
            self._handle_notify,  # type: ignore[arg-type]
        )
        await asyncio.sleep(SERVICE_SETTLE_DELAY)

    async def disconnect(self) -> None:
        if self._client.is_connected:
            await self._client.disconnect()

    async def load_equipment_information(self) -> EquipmentInformation:
        """Query identity and the supported characteristic set."""
        response = await self._send_command(Command.EQUIPMENT_INFORMATION)
        equipment = parse_command_header(response, Command.EQUIPMENT_INFORMATION)
        try:
            equipment_type: SportsEquipment | int = SportsEquipment(equipment)
        except ValueError:
            equipment_type = equipment
        self._equipment_information = EquipmentInformation(
            equipment=equipment_type,
            characteristics=parse_equipment_information_response(response),
        )
        return self._equipment_information

    async def load_supported_capabilities(self) -> list[int]:
        info = self._require_equipment_info()
        response = await self._send_command(Command.SUPPORTED_CAPABILITIES)
        parse_command_header(response, Command.SUPPORTED_CAPABILITIES)
        info.supported_capabilities = parse_features_response(response)
        return info.supported_capabilities

    async def enable(self, activation_code: str) -> None:
        """Send the activation code so reads/writes are accepted.

        Raises:
            ActivationError: If the equipment rejects or ignores the code
        """
        payload = bytes.fromhex(activation_code)
        try:
            response = await self._send_command(Command.ENABLE, payload)
            parse_command_header(response, Command.ENABLE)
        except TimeoutError as e:
            raise ActivationError(
                "Device did not respond to activation code. "
                "The code may be incorrect for this device."
            ) from e
        except ValueError as e:
            if "response code not OK" in str(e):
                raise ActivationError("Device rejected the activation code.") from e
            raise
        LOGGER.debug("Enable response: %s", response.hex())

    async def write_and_read(
        self,
        writes: Iterable[WriteValue] | None,
        reads: Iterable[str | int],
    ) -> dict[str, Any]:
        """Write characteristics and return requested read values in one exchange."""
        info = self._require_equipment_info()
        read_defs = resolve_characteristics(reads)
        payload = build_write_and_read_payload(info.characteristics, writes, read_defs)
        response = await self._send_command(Command.WRITE_AND_READ, payload)
        parse_command_header(response, Command.WRITE_AND_READ)
        return parse_write_and_read_response(info.characteristics, response, read_defs)

    async def _send_command(self, command: Command, payload: bytes = b"") -> bytes:
        equipment = (
            self._equipment_information.equipment
            if self._equipment_information
            else SportsEquipment.GENERAL
        )
        return await self._send_request(build_request(equipment, command, payload))

    async def _send_request(self, request: bytes) -> bytes:
        """Send a raw request and wait for the response."""
        async with self._response_lock:
            loop = asyncio.get_running_loop()
            self._response_future = loop.create_future()
            self._response_state = _ResponseState()

            # Write the request as BLE chunks; response will arrive via notify.
            for message in build_write_messages(request):
                await self._client.write_gatt_char(BLE_UUIDS["tx"], message, response=False)
                await asyncio.sleep(WRITE_THROTTLE)

            return await asyncio.wait_for(self._response_future, timeout=self.response_timeout)

    def _handle_notify(self, _: int, data: bytearray) -> None:
        """Assemble response chunks from BLE notifications."""
        if not self._response_future or self._response_future.done():
            return

        try:
            message_index = determine_message_index(bytes(data))
            if message_index == MessageIndex.HEADER:
                upcoming_messages, buffer = get_header_from_response(bytes(data))
                self._response_state.upcoming_messages = upcoming_messages
                self._response_state.buffer = buffer
                return

            if self._response_state.buffer is None:
                raise ValueError("response buffer not initialized")

            fill_response(
                self._response_state.buffer,
                self._response_state.upcoming_messages,
                bytes(data),
            )

            if message_index == MessageIndex.EOF:
                response = bytes(self._response_state.buffer)
                validate_checksum(response)
                self._response_future.set_result(response)
        except ValueError as exc:
            self._response_future.set_exception(exc)

    def _require_equipment_info(self) -> EquipmentInformation:
        if self._equipment_information is None:
            raise ValueError("Equipment information not available. Load it first.")
        return self._equipment_information
