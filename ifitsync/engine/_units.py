"""Speed/incline conversion between device-native and display units."""

from __future__ import annotations

import math
from typing import Any

KPH_PER_MPH_FACTOR = 0.621

# Displayed speeds below this are treated as standstill.
STANDSTILL_EPSILON = 0.1


def safe_float(value: Any) -> float:
    """Parse a raw field value; anything unparsable becomes 0.0 instead of raising."""
    if value is None:
        return 0.0
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if math.isnan(result) else result


def device_speed_to_display(speed: float, device_metric: bool, display_metric: bool) -> float:
    """Convert a speed reported by the equipment to the configured display unit."""
    if device_metric == display_metric:
        return speed
    if device_metric:
        return speed * KPH_PER_MPH_FACTOR
    return speed / KPH_PER_MPH_FACTOR


def display_speed_to_device(speed: float, request_metric: bool, device_metric: bool) -> float:
    """Convert a requested speed to the unit the equipment expects."""
    if request_metric == device_metric:
        return speed
    if request_metric:
        return speed * KPH_PER_MPH_FACTOR
    return speed / KPH_PER_MPH_FACTOR


def calibrate_speed(speed: float, offset: float = 0.0, multiplier: float = 1.0) -> float:
    """Apply the configured offset, then the multiplier."""
    return (speed + offset) * multiplier


def incline_to_display(incline: float) -> float:
    return incline


def speed_unit(metric: bool) -> str:
    return "km/h" if metric else "mi/h"


def distance_unit(metric: bool) -> str:
    return "m" if metric else "ft"
