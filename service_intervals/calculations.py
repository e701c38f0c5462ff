"""Helper functions for next-due and urgency calculations."""

from datetime import date
from dateutil.relativedelta import relativedelta
from typing import Optional

from .interval_settings import IntervalSettings
from .interval_type import IntervalType
from .urgency import Urgency


def calc_next_due_date(
    max_service_date: Optional[date], settings: IntervalSettings
) -> Optional[date]:
    """Calculate next due date: last service date + days interval."""
    if max_service_date is None:
        return None
    if settings.days_interval <= 0 or not settings.interval_type.uses_days:
        return None
    return max_service_date + relativedelta(days=settings.days_interval)


def calc_next_due_odometer(
    max_odometer_km: Optional[float], settings: IntervalSettings
) -> Optional[float]:
    """Calculate next due odometer: last service odometer + mileage interval."""
    if max_odometer_km is None:
        return None
    if settings.mileage_interval_km <= 0 or not settings.interval_type.uses_mileage:
        return None
    return max_odometer_km + settings.mileage_interval_km


def calc_remaining_days(next_due_date: Optional[date], today: date) -> Optional[int]:
    """Whole days until the next due date; negative once it has passed."""
    if next_due_date is None:
        return None
    return (next_due_date - today).days


def calc_remaining_km(
    next_due_odometer_km: Optional[float], current_odometer_km: Optional[float]
) -> Optional[float]:
    """Distance left until the next due odometer; negative once it has passed.

    An unknown current odometer counts as zero.
    """
    if next_due_odometer_km is None:
        return None
    return next_due_odometer_km - (current_odometer_km or 0)


def classify_urgency(
    remaining_days: Optional[int],
    remaining_km: Optional[float],
    interval_type: IntervalType,
    notify_in_days: float,
    notify_in_km: float,
) -> Urgency:
    """
    Classify how urgent the next service is.

    - NONE interval type is always OK
    - Either remaining value below zero is OVERDUE
    - DUE_SOON depends on the interval type:
        MILEAGE_ONLY / DAYS_ONLY check their own threshold,
        MILEAGE_OR_DAYS needs either threshold,
        MILEAGE_AND_DAYS needs both, or the only known one
    - Anything else with a known remaining value is UPCOMING
    """
    if interval_type == IntervalType.NONE:
        return Urgency.OK

    if remaining_days is not None and remaining_days < 0:
        return Urgency.OVERDUE
    if remaining_km is not None and remaining_km < 0:
        return Urgency.OVERDUE

    km_soon = remaining_km is not None and remaining_km <= notify_in_km
    days_soon = remaining_days is not None and remaining_days <= notify_in_days

    if interval_type == IntervalType.MILEAGE_ONLY:
        due_soon = km_soon
    elif interval_type == IntervalType.DAYS_ONLY:
        due_soon = days_soon
    elif interval_type == IntervalType.MILEAGE_OR_DAYS:
        due_soon = km_soon or days_soon
    else:
        # TODO: product to confirm raising DUE_SOON when one side is untracked
        due_soon = (
            (km_soon and days_soon)
            or (remaining_km is None and days_soon)
            or (remaining_days is None and km_soon)
        )

    if due_soon:
        return Urgency.DUE_SOON
    if remaining_days is not None or remaining_km is not None:
        return Urgency.UPCOMING
    return Urgency.OK
