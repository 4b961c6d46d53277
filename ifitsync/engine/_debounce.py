from __future__ import annotations

from dataclasses import dataclass

from ..client.protocol import Mode, PulseReading


@dataclass
class DebounceMemory:
    """Per-session flags used to suppress repeated telemetry events."""

    zero_speed_sent: bool = False
    previous_mode: Mode | None = None
    pulse_absence_confirmed: bool = False


class DebounceTracker:
    """Decide which transitional events are worth publishing.

    Only the poll cycle calls into the tracker; a disconnect resets it.
    """

    def __init__(self) -> None:
        self.memory = DebounceMemory()

    def reset(self) -> None:
        self.memory = DebounceMemory()

    def enter_active(self, mode: Mode) -> None:
        """Record an active cycle: the next idle span gets a fresh zero-speed event."""
        self.memory.zero_speed_sent = False
        self.memory.previous_mode = mode

    def claim_zero_speed(self) -> bool:
        """Return True once per idle/paused span."""
        if self.memory.zero_speed_sent:
            return False
        self.memory.zero_speed_sent = True
        return True

    def claim_mode_change(self, mode: Mode) -> bool:
        """Return True when ``mode`` differs from the previously observed mode."""
        if self.memory.previous_mode == mode:
            return False
        self.memory.previous_mode = mode
        return True

    def claim_pulse(self, pulse: PulseReading) -> bool:
        """Return True when this cycle's heart rate should be published.

        A reading with a real source is always published. The first reading
        without a source is published once more so the final value is not
        lost; later ones are suppressed until a source is reported again.
        """
        if pulse.present:
            self.memory.pulse_absence_confirmed = False
            return True
        if self.memory.pulse_absence_confirmed:
            return False
        self.memory.pulse_absence_confirmed = True
        return True
