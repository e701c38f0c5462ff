"""
Incremental upkeep of derived service intervals.

Two write paths keep a pair's row in step with its expense history:

- merge_max_and_recompute: an expense was added. The stored maxima can only
  grow, so one upsert that keeps the larger of the stored and incoming
  values is enough, in any order and under any concurrency.
- rescan_and_recompute: an expense was changed or removed, or the settings
  changed. The maximum may have dropped, so it is re-read from the remaining
  expenses while the pair is locked.
"""

import logging
from contextlib import contextmanager
from datetime import date
from typing import Iterator, Optional

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.engine import Connection

from .calculations import calc_next_due_date, calc_next_due_odometer
from .expense import MaintenanceExpense
from .interval_settings import IntervalSettings
from .resolver import IntervalSettingsResolver
from .service_interval import ServiceInterval
from .store import (
    Store,
    expenses,
    qualifying_expense_filter,
    service_intervals,
    upsert_insert,
)

logger = logging.getLogger(__name__)


def delete_interval(conn: Connection, vehicle_id: str, kind_id: int) -> int:
    result = conn.execute(
        delete(service_intervals).where(
            service_intervals.c.vehicle_id == vehicle_id,
            service_intervals.c.kind_id == kind_id,
        )
    )
    return result.rowcount


def write_interval(conn: Connection, record: ServiceInterval) -> None:
    """Insert the record, or overwrite the pair's row with it."""
    t = service_intervals
    stmt = upsert_insert(conn)(t).values(**record.as_row())
    stmt = stmt.on_conflict_do_update(
        index_elements=[t.c.vehicle_id, t.c.kind_id],
        set_={
            name: stmt.excluded[name]
            for name in record.as_row()
            if name not in ("id", "vehicle_id", "kind_id")
        },
    )
    conn.execute(stmt)


def merge_max_and_recompute(
    conn: Connection,
    vehicle_id: str,
    kind_id: int,
    service_date: date,
    odometer_km: Optional[float],
    settings: IntervalSettings,
) -> ServiceInterval:
    """
    Fold one new service into the pair's row.

    The upsert keeps max(stored, incoming) for the date and the odometer
    (an unknown odometer never wins over a known one), then next-due values
    are recomputed from the merged maxima.
    """
    t = service_intervals
    fresh = ServiceInterval.compute(vehicle_id, kind_id, settings, service_date, odometer_km)
    stmt = upsert_insert(conn)(t).values(**fresh.as_row())
    incoming = stmt.excluded
    stmt = stmt.on_conflict_do_update(
        index_elements=[t.c.vehicle_id, t.c.kind_id],
        set_={
            "interval_type": incoming.interval_type,
            "mileage_interval_km": incoming.mileage_interval_km,
            "days_interval": incoming.days_interval,
            "max_service_date": case(
                (incoming.max_service_date > t.c.max_service_date, incoming.max_service_date),
                else_=t.c.max_service_date,
            ),
            "max_odometer_km": case(
                (t.c.max_odometer_km.is_(None), incoming.max_odometer_km),
                (incoming.max_odometer_km > t.c.max_odometer_km, incoming.max_odometer_km),
                else_=t.c.max_odometer_km,
            ),
        },
    ).returning(*t.c)
    merged = ServiceInterval.from_row(conn.execute(stmt).mappings().one())

    next_due_date = calc_next_due_date(merged.max_service_date, settings)
    next_due_odometer_km = calc_next_due_odometer(merged.max_odometer_km, settings)
    if (next_due_date, next_due_odometer_km) != (
        merged.next_due_date,
        merged.next_due_odometer_km,
    ):
        conn.execute(
            update(t)
            .where(t.c.id == merged.id)
            .values(next_due_date=next_due_date, next_due_odometer_km=next_due_odometer_km)
        )
        merged.next_due_date = next_due_date
        merged.next_due_odometer_km = next_due_odometer_km
    return merged


def rescan_and_recompute(
    conn: Connection,
    resolver: IntervalSettingsResolver,
    vehicle_id: str,
    kind_id: int,
) -> Optional[ServiceInterval]:
    """
    Rebuild one pair's row from its qualifying expenses.

    Deletes the row when the kind is not schedulable, tracking resolves to
    NONE, or no qualifying expense is left. Caller holds the pair lock.
    """
    if not resolver.is_schedulable(conn, kind_id):
        delete_interval(conn, vehicle_id, kind_id)
        return None

    settings = resolver.resolve(conn, vehicle_id, kind_id)
    if not settings.is_tracked:
        if delete_interval(conn, vehicle_id, kind_id):
            logger.debug("Tracking disabled for %s/%s, row dropped", vehicle_id, kind_id)
        return None

    maxima = conn.execute(
        select(
            func.max(expenses.c.service_date).label("max_service_date"),
            func.max(expenses.c.odometer_km).label("max_odometer_km"),
        ).where(
            expenses.c.vehicle_id == vehicle_id,
            expenses.c.kind_id == kind_id,
            qualifying_expense_filter(),
        )
    ).one()
    if maxima.max_service_date is None:
        delete_interval(conn, vehicle_id, kind_id)
        return None

    record = ServiceInterval.compute(
        vehicle_id, kind_id, settings, maxima.max_service_date, maxima.max_odometer_km
    )
    write_interval(conn, record)
    return record


class IncrementalMaintainer:
    """
    Subscriber for expense lifecycle and settings events.

    Every handler accepts an optional open connection so the caller can run
    it inside the transaction that changed the expense; without one, the
    handler opens its own.
    """

    def __init__(self, store: Store, resolver: Optional[IntervalSettingsResolver] = None):
        self.store = store
        self.resolver = resolver or IntervalSettingsResolver()

    @contextmanager
    def _unit_of_work(self, conn: Optional[Connection]) -> Iterator[Connection]:
        if conn is not None:
            yield conn
            return
        with self.store.transaction() as own:
            yield own

    def on_expense_created(
        self,
        vehicle_id: str,
        kind_id: int,
        service_date: date,
        odometer_km: Optional[float] = None,
        conn: Optional[Connection] = None,
    ) -> Optional[ServiceInterval]:
        with self._unit_of_work(conn) as conn:
            self.store.lock_shared(conn)
            if not self.resolver.is_schedulable(conn, kind_id):
                return None
            settings = self.resolver.resolve(conn, vehicle_id, kind_id)
            if not settings.is_tracked:
                delete_interval(conn, vehicle_id, kind_id)
                return None
            logger.debug(
                "Merging service %s @ %s into %s/%s",
                service_date,
                odometer_km,
                vehicle_id,
                kind_id,
            )
            return merge_max_and_recompute(
                conn, vehicle_id, kind_id, service_date, odometer_km, settings
            )

    def on_expense_removed(
        self, vehicle_id: str, kind_id: int, conn: Optional[Connection] = None
    ) -> Optional[ServiceInterval]:
        with self._unit_of_work(conn) as conn:
            self.store.lock_pair(conn, vehicle_id, kind_id)
            logger.debug("Rescanning %s/%s after removal", vehicle_id, kind_id)
            return rescan_and_recompute(conn, self.resolver, vehicle_id, kind_id)

    def on_expense_updated(
        self,
        old: MaintenanceExpense,
        new: MaintenanceExpense,
        conn: Optional[Connection] = None,
    ) -> Optional[ServiceInterval]:
        """
        Handle an edited expense.

        Moving to another (vehicle, kind) pair is a removal from the old pair
        plus a creation in the new one. Otherwise the pair is rescanned, as
        the old values may have been the maximum.
        """
        with self._unit_of_work(conn) as conn:
            moved = (old.vehicle_id, old.kind_id) != (new.vehicle_id, new.kind_id)
            if moved:
                self.on_expense_removed(old.vehicle_id, old.kind_id, conn=conn)
                if new.is_active:
                    return self.on_expense_created(
                        new.vehicle_id,
                        new.kind_id,
                        new.service_date,
                        new.odometer_km,
                        conn=conn,
                    )
            return self.on_expense_removed(new.vehicle_id, new.kind_id, conn=conn)

    def on_interval_settings_changed(
        self, vehicle_id: str, kind_id: int, conn: Optional[Connection] = None
    ) -> Optional[ServiceInterval]:
        with self._unit_of_work(conn) as conn:
            self.store.lock_pair(conn, vehicle_id, kind_id)
            logger.debug("Rescanning %s/%s after settings change", vehicle_id, kind_id)
            return rescan_and_recompute(conn, self.resolver, vehicle_id, kind_id)
