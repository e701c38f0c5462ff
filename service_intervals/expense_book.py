"""Maintenance expense records and the lifecycle events they emit."""

import logging
import uuid
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.engine import Connection

from .errors import NotFoundError, ValidationFailedError
from .expense import MaintenanceExpense
from .maintainer import IncrementalMaintainer
from .store import Store, expenses

logger = logging.getLogger(__name__)

_EDITABLE = ("vehicle_id", "kind_id", "service_date", "odometer_km", "is_active")


def _from_row(row) -> MaintenanceExpense:
    return MaintenanceExpense(
        id=row.id,
        vehicle_id=row.vehicle_id,
        kind_id=row.kind_id,
        service_date=row.service_date,
        odometer_km=row.odometer_km,
        is_active=row.is_active,
    )


def _check_odometer(odometer_km: Optional[float]) -> None:
    if odometer_km is not None and odometer_km < 0:
        raise ValidationFailedError.single("odometer_km", "Odometer must not be negative")


class ExpenseBook:
    """
    Write side for maintenance expenses.

    Each write and the interval upkeep it triggers share one transaction.
    Removal is a soft delete.
    """

    def __init__(self, store: Store, maintainer: IncrementalMaintainer):
        self.store = store
        self.maintainer = maintainer

    def _load(self, conn: Connection, expense_id: str) -> MaintenanceExpense:
        row = conn.execute(
            select(expenses).where(expenses.c.id == expense_id, expenses.c.removed_at.is_(None))
        ).first()
        if row is None:
            raise NotFoundError(f"Expense {expense_id} not found")
        return _from_row(row)

    def get(self, expense_id: str) -> MaintenanceExpense:
        with self.store.engine.connect() as conn:
            return self._load(conn, expense_id)

    def list_for_vehicle(self, vehicle_id: str) -> List[MaintenanceExpense]:
        with self.store.engine.connect() as conn:
            rows = conn.execute(
                select(expenses)
                .where(expenses.c.vehicle_id == vehicle_id, expenses.c.removed_at.is_(None))
                .order_by(expenses.c.service_date, expenses.c.id)
            )
            return [_from_row(row) for row in rows]

    def add(
        self,
        vehicle_id: str,
        kind_id: int,
        service_date: date,
        odometer_km: Optional[float] = None,
        is_active: bool = True,
        expense_id: Optional[str] = None,
    ) -> MaintenanceExpense:
        _check_odometer(odometer_km)
        expense = MaintenanceExpense(
            id=expense_id or str(uuid.uuid4()),
            vehicle_id=vehicle_id,
            kind_id=kind_id,
            service_date=service_date,
            odometer_km=odometer_km,
            is_active=is_active,
        )
        with self.store.transaction() as conn:
            conn.execute(
                expenses.insert().values(
                    id=expense.id,
                    vehicle_id=vehicle_id,
                    kind_id=kind_id,
                    service_date=service_date,
                    odometer_km=odometer_km,
                    is_active=is_active,
                )
            )
            if is_active:
                self.maintainer.on_expense_created(
                    vehicle_id, kind_id, service_date, odometer_km, conn=conn
                )
        logger.debug("Added expense %s for %s/%s", expense.id, vehicle_id, kind_id)
        return expense

    def update(self, expense_id: str, **changes) -> MaintenanceExpense:
        unknown = sorted(set(changes) - set(_EDITABLE))
        if unknown:
            raise ValidationFailedError([(name, "Field cannot be updated") for name in unknown])
        if not changes:
            raise ValidationFailedError.single("params", "No update fields supplied")
        _check_odometer(changes.get("odometer_km"))

        with self.store.transaction() as conn:
            old = self._load(conn, expense_id)
            new = replace(old, **changes)
            conn.execute(update(expenses).where(expenses.c.id == expense_id).values(**changes))
            self.maintainer.on_expense_updated(old, new, conn=conn)
        return new

    def remove(self, expense_id: str) -> MaintenanceExpense:
        with self.store.transaction() as conn:
            old = self._load(conn, expense_id)
            conn.execute(
                update(expenses)
                .where(expenses.c.id == expense_id)
                .values(removed_at=datetime.now(timezone.utc).replace(tzinfo=None))
            )
            self.maintainer.on_expense_removed(old.vehicle_id, old.kind_id, conn=conn)
        logger.debug("Removed expense %s", expense_id)
        return old
