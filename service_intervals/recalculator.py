"""Wipe-and-rebuild of derived service intervals."""

import logging
from typing import List, Optional

from sqlalchemy import and_, delete, func, insert, select
from sqlalchemy.engine import Connection

from .interval_settings import IntervalSettings
from .interval_type import IntervalType
from .maintainer import rescan_and_recompute
from .resolver import IntervalSettingsResolver
from .service_interval import ServiceInterval
from .store import (
    Store,
    expenses,
    interval_defaults,
    interval_overrides,
    qualifying_expense_filter,
    service_intervals,
)

logger = logging.getLogger(__name__)


class FullRecalculator:
    """
    Rebuild derived rows from expense history.

    Both operations run in one transaction: a failure leaves the previous
    rows in place, and re-running is always safe.
    """

    def __init__(self, store: Store, resolver: Optional[IntervalSettingsResolver] = None):
        self.store = store
        self.resolver = resolver or IntervalSettingsResolver()

    def recalculate_for_vehicle(self, vehicle_id: str) -> List[ServiceInterval]:
        """Rebuild every row of one vehicle, kind by kind."""
        written = []
        with self.store.transaction() as conn:
            conn.execute(
                delete(service_intervals).where(service_intervals.c.vehicle_id == vehicle_id)
            )
            for kind_id in self.resolver.schedulable_kind_ids(conn):
                self.store.lock_pair(conn, vehicle_id, kind_id)
                record = rescan_and_recompute(conn, self.resolver, vehicle_id, kind_id)
                if record is not None:
                    written.append(record)
        logger.info("Recalculated %d service intervals for vehicle %s", len(written), vehicle_id)
        return written

    def recalculate_all(self) -> int:
        """Rebuild every row in the system in one bulk pass. Returns rows written."""
        with self.store.transaction() as conn:
            self.store.lock_all(conn)
            conn.execute(delete(service_intervals))
            kind_ids = self.resolver.schedulable_kind_ids(conn)
            if not kind_ids:
                logger.info("No schedulable maintenance kinds, nothing to recalculate")
                return 0
            records = self._compute_all(conn, kind_ids)
            if records:
                conn.execute(insert(service_intervals), [r.as_row() for r in records])
        logger.info("Recalculated %d service intervals", len(records))
        return len(records)

    def _compute_all(self, conn: Connection, kind_ids: List[int]) -> List[ServiceInterval]:
        """
        One grouped query for the maxima of every (vehicle, kind) pair, joined
        with override and default settings; pairs resolving to NONE are skipped.
        """
        maxima = (
            select(
                expenses.c.vehicle_id,
                expenses.c.kind_id,
                func.max(expenses.c.service_date).label("max_service_date"),
                func.max(expenses.c.odometer_km).label("max_odometer_km"),
            )
            .where(qualifying_expense_filter(), expenses.c.kind_id.in_(kind_ids))
            .group_by(expenses.c.vehicle_id, expenses.c.kind_id)
            .subquery()
        )
        sia = interval_overrides
        sid = interval_defaults
        rows = conn.execute(
            select(
                maxima.c.vehicle_id,
                maxima.c.kind_id,
                maxima.c.max_service_date,
                maxima.c.max_odometer_km,
                sia.c.id.label("override_id"),
                sia.c.interval_type.label("override_type"),
                sia.c.mileage_interval_km.label("override_mileage_km"),
                sia.c.days_interval.label("override_days"),
                sid.c.interval_type.label("default_type"),
                sid.c.mileage_interval.label("default_mileage_km"),
                sid.c.days_interval.label("default_days"),
            )
            .select_from(
                maxima.outerjoin(
                    sia,
                    and_(
                        sia.c.vehicle_id == maxima.c.vehicle_id,
                        sia.c.kind_id == maxima.c.kind_id,
                        sia.c.removed_at.is_(None),
                    ),
                ).outerjoin(
                    sid,
                    and_(sid.c.kind_id == maxima.c.kind_id, sid.c.is_active.is_(True)),
                )
            )
            .order_by(maxima.c.vehicle_id, maxima.c.kind_id)
        )

        records = []
        for row in rows:
            if row.override_id is not None:
                settings = IntervalSettings(
                    IntervalType(row.override_type),
                    row.override_mileage_km or 0,
                    row.override_days or 0,
                )
            elif row.default_type is not None:
                settings = IntervalSettings(
                    IntervalType(row.default_type),
                    row.default_mileage_km or 0,
                    row.default_days or 0,
                )
            else:
                continue
            if not settings.is_tracked:
                continue
            records.append(
                ServiceInterval.compute(
                    row.vehicle_id,
                    row.kind_id,
                    settings,
                    row.max_service_date,
                    row.max_odometer_km,
                )
            )
        return records
