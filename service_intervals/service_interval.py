"""ServiceInterval (stored) and IntervalView (enriched) dataclasses."""

import uuid
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Dict, Mapping, Optional

from .calculations import calc_next_due_date, calc_next_due_odometer
from .interval_settings import IntervalSettings
from .interval_type import IntervalType
from .urgency import Urgency

# Fixed namespace so a rebuilt row keeps the id it had before.
INTERVAL_ID_NAMESPACE = uuid.UUID("6f1c2d0e-4b1a-5c8e-9a57-3e2f7d9b1c40")


def interval_id(vehicle_id: str, kind_id: int) -> str:
    """Deterministic id for the derived row of a (vehicle, kind) pair."""
    return str(uuid.uuid5(INTERVAL_ID_NAMESPACE, f"{vehicle_id}/{kind_id}"))


@dataclass
class ServiceInterval:
    """Derived next-service record for one (vehicle, kind) pair, all metric."""

    id: str
    vehicle_id: str
    kind_id: int
    interval_type: IntervalType
    mileage_interval_km: float
    days_interval: int
    max_service_date: date
    max_odometer_km: Optional[float] = None
    next_due_date: Optional[date] = None
    next_due_odometer_km: Optional[float] = None

    @property
    def settings(self) -> IntervalSettings:
        return IntervalSettings(
            self.interval_type, self.mileage_interval_km, self.days_interval
        )

    @classmethod
    def compute(
        cls,
        vehicle_id: str,
        kind_id: int,
        settings: IntervalSettings,
        max_service_date: date,
        max_odometer_km: Optional[float],
    ) -> "ServiceInterval":
        """Build the record for a pair from its latest service and settings."""
        return cls(
            id=interval_id(vehicle_id, kind_id),
            vehicle_id=vehicle_id,
            kind_id=kind_id,
            interval_type=settings.interval_type,
            mileage_interval_km=settings.mileage_interval_km,
            days_interval=settings.days_interval,
            max_service_date=max_service_date,
            max_odometer_km=max_odometer_km,
            next_due_date=calc_next_due_date(max_service_date, settings),
            next_due_odometer_km=calc_next_due_odometer(max_odometer_km, settings),
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ServiceInterval":
        return cls(
            id=row["id"],
            vehicle_id=row["vehicle_id"],
            kind_id=row["kind_id"],
            interval_type=IntervalType(row["interval_type"]),
            mileage_interval_km=row["mileage_interval_km"],
            days_interval=row["days_interval"],
            max_service_date=row["max_service_date"],
            max_odometer_km=row["max_odometer_km"],
            next_due_date=row["next_due_date"],
            next_due_odometer_km=row["next_due_odometer_km"],
        )

    def as_row(self) -> Dict[str, Any]:
        row = asdict(self)
        row["interval_type"] = int(self.interval_type)
        return row


@dataclass
class IntervalView:
    """A ServiceInterval as shown to an account, in its distance unit."""

    id: str
    vehicle_id: str
    kind_id: int
    interval_type: IntervalType
    distance_unit: str
    mileage_interval: int
    days_interval: int
    max_service_date: date
    max_odometer: Optional[int]
    next_due_date: Optional[date]
    next_due_odometer: Optional[int]
    remaining_days: Optional[int]
    remaining_mileage: Optional[int]
    urgency: Urgency

    @property
    def is_due(self) -> bool:
        return self.urgency in (Urgency.OVERDUE, Urgency.DUE_SOON)
