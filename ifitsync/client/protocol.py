"""iFit BLE codec: identifiers, characteristic converters and message framing."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

RESPONSE_OK_CODE = 2
MAX_BYTES_PER_MESSAGE = 18

# Message format constants
MIN_HEADER_LENGTH = 4
MIN_CHUNK_LENGTH = 2
MIN_COMMAND_HEADER_LENGTH = 4
MIN_FEATURES_RESPONSE_LENGTH = 9
MIN_CHECKSUM_LENGTH = 5
EQUIPMENT_INFORMATION_BITMAP_OFFSET = 16
WRITE_AND_READ_VALUES_OFFSET = 8


def enum_label(member: IntEnum) -> str:
    """Return the CamelCase label published for an enum member (``MISSING_SAFETY_KEY`` -> ``MissingSafetyKey``)."""
    return "".join(part.capitalize() for part in member.name.split("_"))


class SportsEquipment(IntEnum):
    """Sports equipment identifiers used by the iFit protocol."""

    GENERAL = 2
    TREADMILL = 4


class PulseSource(IntEnum):
    """Pulse source identifiers reported by the equipment."""

    NO = 0
    HAND = 1
    UNKNOWN = 2
    UNKNOWN2 = 3
    BLE = 4


class Mode(IntEnum):
    """Equipment mode identifiers.

    The equipment reports a single value while a workout is running, so
    ``RUNNING`` is an alias of ``ACTIVE``.
    """

    UNKNOWN = 0
    IDLE = 1
    ACTIVE = 2
    RUNNING = 2
    PAUSE = 3
    SUMMARY = 4
    SETTINGS = 7
    MISSING_SAFETY_KEY = 8


ACTIVE_MODES = frozenset({Mode.ACTIVE, Mode.RUNNING})


class Command(IntEnum):
    """Command identifiers used in request headers."""

    WRITE_AND_READ = 0x02
    SUPPORTED_CAPABILITIES = 0x80
    EQUIPMENT_INFORMATION = 0x81
    ENABLE = 0x90


class MessageIndex(IntEnum):
    """Chunk index markers for BLE message framing."""

    HEADER = 0xFE
    EOF = 0xFF


def decode_mode(value: Any) -> Mode:
    """Map a raw mode value to ``Mode``; unknown values become ``Mode.UNKNOWN``."""
    try:
        return Mode(int(value))
    except (TypeError, ValueError):
        return Mode.UNKNOWN


def decode_pulse_source(value: Any) -> PulseSource:
    try:
        return PulseSource(int(value))
    except (TypeError, ValueError):
        return PulseSource.UNKNOWN


@dataclass(frozen=True)
class PulseReading:
    """Heart rate value together with the sensor that produced it."""

    value: int = 0
    source: PulseSource = PulseSource.NO

    @property
    def present(self) -> bool:
        return self.source != PulseSource.NO


@dataclass(frozen=True)
class Converter:
    """Converter describing buffer encoding/decoding for a characteristic."""

    size: int
    from_buffer: Callable[[bytes, int], Any]
    to_buffer: Callable[[bytearray, int, Any], int]


@dataclass(frozen=True)
class CharacteristicDefinition:
    """Definition of a characteristic and its converter."""

    name: str
    id: int
    read_only: bool
    converter: Converter


@dataclass
class EquipmentInformation:
    """Identity of the connected equipment as reported by the first bootstrap command."""

    equipment: SportsEquipment | int
    characteristics: dict[int, CharacteristicDefinition]
    supported_capabilities: list[int] = field(default_factory=list)

    @property
    def equipment_label(self) -> str:
        if isinstance(self.equipment, SportsEquipment):
            return enum_label(self.equipment)
        return str(self.equipment)


@dataclass(frozen=True)
class WriteValue:
    """Represents a write request for a single characteristic."""

    characteristic: CharacteristicDefinition
    value: Any


def _int_converter(size: int) -> Converter:
    def from_buffer(buffer: bytes, pos: int) -> int:
        return int.from_bytes(buffer[pos : pos + size], "little")

    def to_buffer(buf: bytearray, pos: int, value: int) -> int:
        buf[pos : pos + size] = int(value).to_bytes(size, "little")
        return pos + size

    return Converter(size, from_buffer, to_buffer)


def _scaled_converter(scale: float, size: int = 2) -> Converter:
    def from_buffer(buffer: bytes, pos: int) -> float:
        return int.from_bytes(buffer[pos : pos + size], "little") / scale

    def to_buffer(buf: bytearray, pos: int, value: float) -> int:
        buf[pos : pos + size] = round(value * scale).to_bytes(size, "little")
        return pos + size

    return Converter(size, from_buffer, to_buffer)


def _bool_from_buffer(buffer: bytes, pos: int) -> bool:
    return buffer[pos] == 1


def _bool_to_buffer(buf: bytearray, pos: int, value: bool) -> int:
    buf[pos] = 1 if value else 0
    return pos + 1


def _mode_from_buffer(buffer: bytes, pos: int) -> Mode:
    return decode_mode(buffer[pos])


def _pulse_from_buffer(buffer: bytes, pos: int) -> PulseReading:
    # Layout: pulse, average, count, source. Only pulse and source are kept.
    return PulseReading(buffer[pos], decode_pulse_source(buffer[pos + 3]))


def _pulse_to_buffer(buf: bytearray, pos: int, value: PulseReading) -> int:
    buf[pos] = int(value.value) & 0xFF
    buf[pos + 1] = 0
    buf[pos + 2] = 0
    buf[pos + 3] = int(value.source)
    return pos + 4


_DOUBLE = _scaled_converter(100.0)
_CALORIES = _scaled_converter(100000000 / 1024, size=4)
_BOOLEAN = Converter(1, _bool_from_buffer, _bool_to_buffer)
_MODE = Converter(1, _mode_from_buffer, _int_converter(1).to_buffer)
_PULSE = Converter(4, _pulse_from_buffer, _pulse_to_buffer)
_ONE_BYTE = _int_converter(1)
_FOUR_BYTES = _int_converter(4)


def _characteristics(*definitions: CharacteristicDefinition) -> dict[str, CharacteristicDefinition]:
    return {definition.name: definition for definition in definitions}


CHARACTERISTICS = _characteristics(
    CharacteristicDefinition("Kph", 0, False, _DOUBLE),
    CharacteristicDefinition("Incline", 1, False, _DOUBLE),
    CharacteristicDefinition("CurrentDistance", 4, True, _FOUR_BYTES),
    CharacteristicDefinition("Distance", 6, True, _FOUR_BYTES),
    CharacteristicDefinition("Volume", 9, False, _ONE_BYTE),
    CharacteristicDefinition("Pulse", 10, False, _PULSE),
    CharacteristicDefinition("UpTime", 11, True, _FOUR_BYTES),
    CharacteristicDefinition("Mode", 12, False, _MODE),
    CharacteristicDefinition("Calories", 13, True, _CALORIES),
    CharacteristicDefinition("CurrentKph", 16, True, _DOUBLE),
    CharacteristicDefinition("CurrentIncline", 17, True, _DOUBLE),
    CharacteristicDefinition("CurrentTime", 20, True, _FOUR_BYTES),
    CharacteristicDefinition("CurrentCalories", 21, True, _CALORIES),
    CharacteristicDefinition("MaxIncline", 27, True, _DOUBLE),
    CharacteristicDefinition("MinIncline", 28, True, _DOUBLE),
    CharacteristicDefinition("MaxKph", 30, True, _DOUBLE),
    CharacteristicDefinition("MinKph", 31, True, _DOUBLE),
    CharacteristicDefinition("Metric", 36, False, _BOOLEAN),
    CharacteristicDefinition("MaxPulse", 49, True, _ONE_BYTE),
    CharacteristicDefinition("TotalTime", 70, True, _FOUR_BYTES),
    CharacteristicDefinition("PausedTime", 103, True, _FOUR_BYTES),
)

CHARACTERISTICS_BY_ID = {value.id: value for value in CHARACTERISTICS.values()}

# Capability bounds read once the equipment is enabled.
BOUND_READS = ("MaxIncline", "MinIncline", "MaxKph", "MinKph", "MaxPulse", "Metric")

# Telemetry read on every poll cycle.
POLL_READS = (
    "CurrentKph",
    "CurrentIncline",
    "Pulse",
    "Mode",
    "PausedTime",
    "TotalTime",
    "MaxKph",
    "MinKph",
    "Calories",
    "CurrentDistance",
    "CurrentCalories",
)

BLE_UUIDS = {
    "service": "000015331412efde1523785feabcd123",
    "rx": "000015351412efde1523785feabcd123",
    "tx": "000015341412efde1523785feabcd123",
}


def resolve_characteristics(names: Iterable[str | int]) -> list[CharacteristicDefinition]:
    """Resolve characteristic names or ids to their definitions."""
    definitions = []
    for item in names:
        if isinstance(item, int):
            if item not in CHARACTERISTICS_BY_ID:
                raise ValueError(f"Unknown characteristic id: {item}")
            definitions.append(CHARACTERISTICS_BY_ID[item])
        else:
            if item not in CHARACTERISTICS:
                raise ValueError(f"Unknown characteristic name: {item}")
            definitions.append(CHARACTERISTICS[item])
    return definitions


def get_bitmap(
    supported: Iterable[int],
    values: Iterable[CharacteristicDefinition | WriteValue] | None,
) -> bytearray:
    """Build a bitmap of characteristic ids used in a request.

    Characteristics the equipment does not support are left out.
    """
    supported = set(supported)
    payload = bytearray([0])
    if values is None:
        return payload

    for item in values:
        characteristic = item.characteristic if isinstance(item, WriteValue) else item
        if characteristic.id not in supported:
            continue
        pos = (characteristic.id // 8) + 1
        if pos > payload[0]:
            payload[0] = pos
            payload.extend([0] * (pos - len(payload) + 1))
        payload[pos] |= 1 << (characteristic.id - (pos - 1) * 8)
    return payload


def get_write_values(supported: Iterable[int], writes: Iterable[WriteValue] | None) -> bytes:
    """Encode write values in ascending characteristic id order."""
    supported = set(supported)
    writes_list = sorted(
        (write for write in writes or () if write.characteristic.id in supported),
        key=lambda item: item.characteristic.id,
    )
    payload = bytearray(sum(write.characteristic.converter.size for write in writes_list))
    pos = 0
    for write in writes_list:
        pos = write.characteristic.converter.to_buffer(payload, pos, write.value)
    return bytes(payload)


def build_write_and_read_payload(
    supported: Iterable[int],
    writes: Iterable[WriteValue] | None,
    reads: Iterable[CharacteristicDefinition],
) -> bytes:
    """Payload layout: write bitmap, write values, read bitmap."""
    supported = set(supported)
    writes_list = list(writes or ())
    return b"".join(
        [
            get_bitmap(supported, writes_list),
            get_write_values(supported, writes_list),
            get_bitmap(supported, reads),
        ]
    )


def build_request(
    equipment: SportsEquipment | int,
    command: Command | int,
    payload: bytes | None = None,
) -> bytes:
    """Build the raw request for a command, including the trailing checksum byte."""
    payload = payload or b""
    length = len(payload) + 4
    header = bytes([2, 4, 2, length, int(equipment), length, int(command)])
    checksum = (int(equipment) + length + int(command) + sum(payload)) & 0xFF
    return header + bytes(payload) + bytes([checksum])


def build_write_messages(request: bytes) -> list[bytes]:
    """Split a request into BLE chunks (header + payload fragments)."""
    number_of_writes = (len(request) + MAX_BYTES_PER_MESSAGE - 1) // MAX_BYTES_PER_MESSAGE
    messages = [bytes([MessageIndex.HEADER, 2, len(request), number_of_writes + 1])]

    for counter in range(number_of_writes):
        offset = counter * MAX_BYTES_PER_MESSAGE
        chunk = request[offset : offset + MAX_BYTES_PER_MESSAGE]
        message = bytearray(20)
        # Chunk index, or EOF for the final chunk.
        message[0] = MessageIndex.EOF if counter == number_of_writes - 1 else counter
        message[1] = len(chunk)
        message[2 : 2 + len(chunk)] = chunk
        messages.append(bytes(message))
    return messages


def determine_message_index(message: bytes) -> int:
    """Return the chunk index byte from a BLE message."""
    if len(message) < 1:
        raise ValueError(f"unexpected message format: {message.hex()}")
    return message[0]


def get_header_from_response(message: bytes) -> tuple[int, bytearray]:
    """Parse the response header chunk and return expected count + buffer."""
    if len(message) < MIN_HEADER_LENGTH:
        raise ValueError("unexpected message format - four bytes expected")
    if message[0] != MessageIndex.HEADER:
        raise ValueError(f"message is not a header: expected 0xfe got {message[0]}")
    return message[3] - 1, bytearray(message[2])


def fill_response(buffer: bytearray, number_of_reads: int, message: bytes) -> None:
    """Copy a response chunk into the buffer based on its index."""
    if len(message) < MIN_CHUNK_LENGTH:
        raise ValueError("unexpected message format - two bytes expected")

    index = message[0]
    if index != MessageIndex.EOF and index >= number_of_reads:
        raise ValueError(
            f"index of message exceeds number of expected reads: {index}>={number_of_reads}"
        )

    pos = (number_of_reads - 1 if index == MessageIndex.EOF else index) * MAX_BYTES_PER_MESSAGE
    length = message[1]
    if length + pos > len(buffer):
        raise ValueError(
            f"amount of data in message exceeds buffer size: {length + pos}>{len(buffer)}"
        )
    buffer[pos : pos + length] = message[2 : 2 + length]


def validate_checksum(response: bytes) -> None:
    """Validate the response checksum; raises on mismatch."""
    if len(response) <= MIN_CHECKSUM_LENGTH:
        return
    if sum(response[4:-1]) & 0xFF != response[-1]:
        raise ValueError("checksum invalid")


def parse_command_header(response: bytes, expected_command: Command | int) -> int:
    """Validate the command response header and return the equipment id."""
    if len(response) < MIN_COMMAND_HEADER_LENGTH:
        raise ValueError("unexpected buffer length - must be greater than 4 bytes")
    length = response[3]
    if len(response) != length + 4:
        raise ValueError(f"buffer length is {len(response)} but header says {length + 4} bytes")
    if response[6] != int(expected_command):
        raise ValueError(f"expected command {int(expected_command)} but got {response[6]}")
    if response[7] != RESPONSE_OK_CODE:
        raise ValueError(f"response code not OK: {response[7]}")
    return response[4]


def parse_equipment_information_response(response: bytes) -> dict[int, CharacteristicDefinition]:
    """Parse the supported characteristic bitmap of an EQUIPMENT_INFORMATION response."""
    pos = EQUIPMENT_INFORMATION_BITMAP_OFFSET
    if len(response) <= pos:
        raise ValueError(f"response too short for the characteristic bitmap: {len(response)}")
    length = response[pos]
    characteristics: dict[int, CharacteristicDefinition] = {}
    for offset, byte in enumerate(response[pos + 1 : pos + 1 + length]):
        for bit in range(8):
            if byte & (1 << bit):
                characteristic = CHARACTERISTICS_BY_ID.get(offset * 8 + bit)
                if characteristic:
                    characteristics[characteristic.id] = characteristic
    return characteristics


def parse_features_response(response: bytes) -> list[int]:
    """Parse a list of supported feature ids from a response."""
    if len(response) < MIN_FEATURES_RESPONSE_LENGTH:
        return []
    count = min(response[8], len(response) - 9)
    return list(response[9 : 9 + count])


def parse_write_and_read_response(
    supported: Iterable[int],
    response: bytes,
    reads: Iterable[CharacteristicDefinition],
) -> dict[str, Any]:
    """Decode read values, which the equipment returns in ascending id order."""
    supported = set(supported)
    result: dict[str, Any] = {}
    pos = WRITE_AND_READ_VALUES_OFFSET
    for characteristic in sorted(reads, key=lambda item: item.id):
        if characteristic.id not in supported:
            continue
        if pos + characteristic.converter.size > len(response):
            raise ValueError(
                f"response too short for {characteristic.name}: {len(response)} bytes"
            )
        result[characteristic.name] = characteristic.converter.from_buffer(response, pos)
        pos += characteristic.converter.size
    return result


def advertisement_suffix(ble_code: str) -> bytes:
    """Manufacturer data suffix advertised by equipment showing ``ble_code``.

    The code bytes are advertised in reverse order after a 0xdd marker:
    displayed code "50dd" is advertised as ``dd dd 50``.
    """
    code = ble_code.strip().lower()
    return bytes.fromhex(f"dd{code[2:4]}{code[0:2]}")


def is_ifit_advertisement(manufacturer_data: bytes) -> bool:
    return len(manufacturer_data) >= 3 and manufacturer_data[-3] == 0xDD


def displayed_code(manufacturer_data: bytes) -> str:
    """Extract the BLE code shown on the equipment from its manufacturer data."""
    if not is_ifit_advertisement(manufacturer_data):
        raise ValueError("Invalid manufacturer data format")
    return manufacturer_data[-2:][::-1].hex()
