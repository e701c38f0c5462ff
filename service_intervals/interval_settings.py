"""IntervalSettings class for a resolved tracking rule."""

from dataclasses import dataclass

from .interval_type import IntervalType


@dataclass(frozen=True)
class IntervalSettings:
    """Effective tracking rule for a (vehicle, maintenance kind) pair.

    Mileage is always kept in kilometers, whatever unit it was entered in.
    """

    interval_type: IntervalType = IntervalType.NONE
    mileage_interval_km: float = 0
    days_interval: int = 0

    @property
    def is_tracked(self) -> bool:
        return self.interval_type != IntervalType.NONE


NO_TRACKING = IntervalSettings()
