from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..client.protocol import ACTIVE_MODES, CHARACTERISTICS, Mode, WriteValue
from ._models import ControlRequest, EquipmentCapabilities
from ._units import display_speed_to_device, safe_float

LOGGER = logging.getLogger(__name__)


class PendingControl:
    """Single-slot mailbox for the next poll cycle's writes.

    ``put`` replaces whatever is waiting (last request wins), ``take`` hands
    the content to exactly one reader and empties the slot.
    """

    def __init__(self) -> None:
        self._writes: list[WriteValue] | None = None

    def put(self, writes: list[WriteValue]) -> None:
        self._writes = list(writes)

    def take(self) -> list[WriteValue] | None:
        writes, self._writes = self._writes, None
        return writes

    def clear(self) -> None:
        self._writes = None

    @property
    def pending(self) -> list[WriteValue] | None:
        return list(self._writes) if self._writes is not None else None


class ControlArbiter:
    """Turn external control requests into a write-set clamped to the equipment bounds."""

    def __init__(self, mailbox: PendingControl | None = None) -> None:
        self.mailbox = mailbox or PendingControl()

    def submit(
        self,
        request: ControlRequest | Mapping[str, Any],
        capabilities: EquipmentCapabilities | None,
        mode: Mode,
        *,
        polling: bool,
    ) -> list[WriteValue] | None:
        """Validate ``request`` and store the resulting writes for the next cycle.

        Speeds at or below ``min_kph`` become a pause request; speeds and
        inclines outside the bounds are clamped.

        Args:
            request: Speed in ``kph`` or ``mph`` (``kph`` wins) and/or an incline
            capabilities: Bounds of the connected equipment, None before bootstrap
            mode: Current equipment mode; only active modes accept requests
            polling: Whether the session is in its poll loop

        Returns:
            The stored writes, or None when the request was ignored
        """
        if not polling or capabilities is None:
            LOGGER.debug("Ignoring control request: session is not polling")
            return None
        if mode not in ACTIVE_MODES:
            LOGGER.debug("Ignoring control request in mode %s", mode.name)
            return None
        if not isinstance(request, ControlRequest):
            request = ControlRequest.model_validate(request)

        writes = self._speed_writes(request, capabilities) + self._incline_writes(
            request, capabilities
        )
        if not writes:
            return None
        self.mailbox.put(writes)
        LOGGER.debug("Pending control: %s", writes)
        return writes

    @staticmethod
    def _speed_writes(
        request: ControlRequest, capabilities: EquipmentCapabilities
    ) -> list[WriteValue]:
        if _given(request.kph):
            speed = display_speed_to_device(
                safe_float(request.kph), True, capabilities.uses_metric_units
            )
        elif _given(request.mph):
            speed = display_speed_to_device(
                safe_float(request.mph), False, capabilities.uses_metric_units
            )
        else:
            return []

        # At or below the minimum the equipment expects a pause, not a slower belt.
        if speed <= capabilities.min_kph:
            return [WriteValue(CHARACTERISTICS["Mode"], Mode.PAUSE)]
        return [WriteValue(CHARACTERISTICS["Kph"], min(speed, capabilities.max_kph))]

    @staticmethod
    def _incline_writes(
        request: ControlRequest, capabilities: EquipmentCapabilities
    ) -> list[WriteValue]:
        incline = request.requested_incline
        if incline is None:
            return []
        incline = min(max(incline, capabilities.min_incline), capabilities.max_incline)
        return [WriteValue(CHARACTERISTICS["Incline"], incline)]


def _given(value: object) -> bool:
    return value is not None and value != ""
