"""MaintenanceExpense class for service records."""

from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass
class MaintenanceExpense:
    """A maintenance expense as seen by the interval engine."""

    vehicle_id: str
    kind_id: int
    service_date: date
    odometer_km: Optional[float] = None
    id: Optional[str] = None
    is_active: bool = True
