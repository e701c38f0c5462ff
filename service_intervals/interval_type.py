"""IntervalType enum for how day and mileage tracking combine."""

from enum import IntEnum


class IntervalType(IntEnum):
    """Combination rule for day-based and mileage-based due tracking."""

    NONE = 0
    MILEAGE_ONLY = 1
    DAYS_ONLY = 2
    MILEAGE_OR_DAYS = 3
    MILEAGE_AND_DAYS = 4

    @property
    def uses_mileage(self) -> bool:
        return self in (
            IntervalType.MILEAGE_ONLY,
            IntervalType.MILEAGE_OR_DAYS,
            IntervalType.MILEAGE_AND_DAYS,
        )

    @property
    def uses_days(self) -> bool:
        return self in (
            IntervalType.DAYS_ONLY,
            IntervalType.MILEAGE_OR_DAYS,
            IntervalType.MILEAGE_AND_DAYS,
        )

    @classmethod
    def parse(cls, value) -> "IntervalType":
        """Accept an IntervalType, its integer value, or its name (any case)."""
        if isinstance(value, IntervalType):
            return value
        if isinstance(value, str) and not value.isdigit():
            return cls[value.strip().upper().replace("-", "_")]
        return cls(int(value))
