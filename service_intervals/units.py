"""Distance unit conversions. Everything is stored in kilometers."""

import math
from typing import Optional

MILES_TO_KM = 1.609344

KM = "km"
MI = "mi"
DISTANCE_UNITS = (KM, MI)


def to_metric(value: Optional[float], unit: str) -> Optional[float]:
    """Convert a distance in the given unit to kilometers."""
    if value is None:
        return None
    if unit == MI:
        return value * MILES_TO_KM
    return value


def from_metric(value_km: Optional[float], unit: str) -> Optional[float]:
    """Convert a distance in kilometers to the given unit."""
    if value_km is None:
        return None
    if unit == MI:
        return value_km / MILES_TO_KM
    return value_km


def round_half_up(value: float) -> int:
    """Round to a whole number, halves away from zero."""
    if value < 0:
        return -math.floor(-value + 0.5)
    return math.floor(value + 0.5)


def from_metric_rounded(value_km: Optional[float], unit: str) -> Optional[int]:
    """Convert from kilometers and round for display."""
    converted = from_metric(value_km, unit)
    if converted is None:
        return None
    return round_half_up(converted)
