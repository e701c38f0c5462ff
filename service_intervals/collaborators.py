"""
Interfaces the query path depends on, with store-backed implementations.

Ownership, current mileage and unit preferences belong to the surrounding
application; the store-backed classes here read the tables it shares with
this engine.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Protocol

from sqlalchemy import func, select

from .store import Store, account_preferences, expenses, qualifying_expense_filter, vehicles
from .units import KM, to_metric

DEFAULT_NOTIFY_IN_DAYS = 14
DEFAULT_NOTIFY_IN_MILEAGE = 500


@dataclass(frozen=True)
class NotifyThresholds:
    """How early to raise DUE_SOON; mileage already in km."""

    days: float
    km: float


class VehicleOwnership(Protocol):
    def is_owned_by_account(self, vehicle_id: str, account_id: str) -> bool: ...

    def active_vehicle_ids(self, account_id: str) -> List[str]: ...


class CurrentMileage(Protocol):
    def max_known_odometer_km(self, vehicle_ids: Iterable[str]) -> Dict[str, float]: ...


class UnitPreferences(Protocol):
    def preferred_distance_unit(self, account_id: str) -> str: ...

    def notify_thresholds(self, account_id: str) -> NotifyThresholds: ...


class StoreVehicleOwnership:
    def __init__(self, store: Store):
        self.store = store

    def is_owned_by_account(self, vehicle_id: str, account_id: str) -> bool:
        with self.store.engine.connect() as conn:
            row = conn.execute(
                select(vehicles.c.id).where(
                    vehicles.c.id == vehicle_id, vehicles.c.account_id == account_id
                )
            ).first()
        return row is not None

    def active_vehicle_ids(self, account_id: str) -> List[str]:
        with self.store.engine.connect() as conn:
            rows = conn.execute(
                select(vehicles.c.id)
                .where(vehicles.c.account_id == account_id, vehicles.c.is_active.is_(True))
                .order_by(vehicles.c.id)
            )
            return [row.id for row in rows]


class StoreCurrentMileage:
    """Current odometer = highest reading on any active expense of the vehicle."""

    def __init__(self, store: Store):
        self.store = store

    def max_known_odometer_km(self, vehicle_ids: Iterable[str]) -> Dict[str, float]:
        vehicle_ids = list(vehicle_ids)
        if not vehicle_ids:
            return {}
        with self.store.engine.connect() as conn:
            rows = conn.execute(
                select(expenses.c.vehicle_id, func.max(expenses.c.odometer_km).label("km"))
                .where(expenses.c.vehicle_id.in_(vehicle_ids), qualifying_expense_filter())
                .group_by(expenses.c.vehicle_id)
            )
            return {row.vehicle_id: row.km for row in rows if row.km is not None}


class StoreUnitPreferences:
    """Per-account preferences with configured fallbacks."""

    def __init__(
        self,
        store: Store,
        default_distance_unit: str = KM,
        default_notify_in_days: int = DEFAULT_NOTIFY_IN_DAYS,
        default_notify_in_mileage: float = DEFAULT_NOTIFY_IN_MILEAGE,
    ):
        self.store = store
        self.default_distance_unit = default_distance_unit
        self.default_notify_in_days = default_notify_in_days
        self.default_notify_in_mileage = default_notify_in_mileage

    def _row(self, account_id: str):
        with self.store.engine.connect() as conn:
            return conn.execute(
                select(account_preferences).where(
                    account_preferences.c.account_id == account_id
                )
            ).first()

    def preferred_distance_unit(self, account_id: str) -> str:
        row = self._row(account_id)
        return row.distance_unit if row is not None else self.default_distance_unit

    def notify_thresholds(self, account_id: str) -> NotifyThresholds:
        row = self._row(account_id)
        unit = row.distance_unit if row is not None else self.default_distance_unit
        days: Optional[float] = row.notify_in_days if row is not None else None
        mileage: Optional[float] = row.notify_in_mileage if row is not None else None
        if days is None:
            days = self.default_notify_in_days
        if mileage is None:
            mileage = self.default_notify_in_mileage
        return NotifyThresholds(days=days, km=to_metric(mileage, unit))
