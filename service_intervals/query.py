"""
Read path for derived service intervals.

Rows are fetched for the caller's vehicles only, then enriched on every
read: distances converted to the caller's unit, remaining days/mileage
computed against today and the current odometer, and urgency classified.
Urgency is never stored, so filtering on it happens after enrichment.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select, update as sql_update

from .calculations import calc_remaining_days, calc_remaining_km, classify_urgency
from .collaborators import (
    CurrentMileage,
    NotifyThresholds,
    UnitPreferences,
    VehicleOwnership,
)
from .errors import NotFoundError, ValidationFailedError
from .interval_type import IntervalType
from .service_interval import IntervalView, ServiceInterval
from .store import Store, service_intervals
from .units import from_metric_rounded, to_metric
from .urgency import Urgency
from .validation import (
    LIST_FILTER_SCHEMA,
    UPDATE_PARAMS_SCHEMA,
    parse_date,
    validate_params,
)

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentContext:
    distance_unit: str
    thresholds: NotifyThresholds
    current_odometer_km: Dict[str, float]


def sort_key(view: IntervalView):
    """Vehicle first, then soonest due date, undated last."""
    return (
        view.vehicle_id,
        view.next_due_date is None,
        view.next_due_date or date.min,
    )


class QueryService:
    """List, fetch and manually adjust an account's service intervals."""

    def __init__(
        self,
        store: Store,
        ownership: VehicleOwnership,
        mileage: CurrentMileage,
        preferences: UnitPreferences,
    ):
        self.store = store
        self.ownership = ownership
        self.mileage = mileage
        self.preferences = preferences

    # =========================================================================
    # Enrichment
    # =========================================================================

    def _context(self, account_id: str, vehicle_ids: Iterable[str]) -> EnrichmentContext:
        vehicle_ids = sorted(set(vehicle_ids))
        return EnrichmentContext(
            distance_unit=self.preferences.preferred_distance_unit(account_id),
            thresholds=self.preferences.notify_thresholds(account_id),
            current_odometer_km=self.mileage.max_known_odometer_km(vehicle_ids),
        )

    def enrich(
        self, record: ServiceInterval, ctx: EnrichmentContext, today: date
    ) -> IntervalView:
        unit = ctx.distance_unit
        remaining_days = calc_remaining_days(record.next_due_date, today)
        remaining_km = calc_remaining_km(
            record.next_due_odometer_km, ctx.current_odometer_km.get(record.vehicle_id)
        )
        urgency = classify_urgency(
            remaining_days,
            remaining_km,
            record.interval_type,
            ctx.thresholds.days,
            ctx.thresholds.km,
        )
        return IntervalView(
            id=record.id,
            vehicle_id=record.vehicle_id,
            kind_id=record.kind_id,
            interval_type=record.interval_type,
            distance_unit=unit,
            mileage_interval=from_metric_rounded(record.mileage_interval_km, unit) or 0,
            days_interval=record.days_interval,
            max_service_date=record.max_service_date,
            max_odometer=from_metric_rounded(record.max_odometer_km, unit),
            next_due_date=record.next_due_date,
            next_due_odometer=from_metric_rounded(record.next_due_odometer_km, unit),
            remaining_days=remaining_days,
            remaining_mileage=from_metric_rounded(remaining_km, unit),
            urgency=urgency,
        )

    def _enrich_all(
        self, account_id: str, records: List[ServiceInterval], today: date
    ) -> List[IntervalView]:
        if not records:
            return []
        ctx = self._context(account_id, (r.vehicle_id for r in records))
        return [self.enrich(record, ctx, today) for record in records]

    # =========================================================================
    # Reads
    # =========================================================================

    def list(
        self,
        account_id: str,
        vehicle_ids: Optional[Sequence[str]] = None,
        kind_ids: Optional[Sequence[int]] = None,
        interval_types: Optional[Sequence[int]] = None,
        urgency: Optional[Sequence[str]] = None,
        today: Optional[date] = None,
    ) -> List[IntervalView]:
        """
        List the account's intervals, optionally filtered.

        Requested vehicles outside the account's active vehicles are dropped
        silently.
        """
        try:
            type_values = [int(IntervalType.parse(t)) for t in interval_types or []]
        except (KeyError, TypeError, ValueError):
            raise ValidationFailedError.single(
                "interval_types", f"Unknown interval type in {list(interval_types)!r}"
            )
        filters = {
            "vehicle_ids": vehicle_ids,
            "kind_ids": kind_ids,
            "interval_types": type_values or None,
            "urgency": urgency,
        }
        filters = {k: list(v) for k, v in filters.items() if v is not None}
        validate_params(filters, LIST_FILTER_SCHEMA)

        allowed = self.ownership.active_vehicle_ids(account_id)
        if vehicle_ids is not None:
            requested = set(vehicle_ids)
            allowed = [v for v in allowed if v in requested]
        if not allowed:
            return []

        t = service_intervals
        query = select(t).where(t.c.vehicle_id.in_(allowed))
        if kind_ids:
            query = query.where(t.c.kind_id.in_(list(kind_ids)))
        if interval_types:
            query = query.where(t.c.interval_type.in_(filters["interval_types"]))
        with self.store.engine.connect() as conn:
            records = [ServiceInterval.from_row(row) for row in conn.execute(query).mappings()]

        views = self._enrich_all(account_id, records, today or date.today())
        if urgency:
            wanted = {Urgency(u) for u in urgency}
            views = [v for v in views if v.urgency in wanted]
        return sorted(views, key=sort_key)

    def _fetch(self, ids: Sequence[str]) -> List[ServiceInterval]:
        with self.store.engine.connect() as conn:
            rows = conn.execute(
                select(service_intervals).where(service_intervals.c.id.in_(list(ids)))
            ).mappings()
            return [ServiceInterval.from_row(row) for row in rows]

    def get(
        self, account_id: str, interval_id: str, today: Optional[date] = None
    ) -> IntervalView:
        records = self._fetch([interval_id])
        if not records or not self.ownership.is_owned_by_account(
            records[0].vehicle_id, account_id
        ):
            raise NotFoundError()
        return self._enrich_all(account_id, records, today or date.today())[0]

    def get_many(
        self, account_id: str, ids: Sequence[str], today: Optional[date] = None
    ) -> List[IntervalView]:
        """Fetch several intervals; any missing or foreign id is NotFound."""
        if not ids:
            return []
        records = self._fetch(ids)
        owned = {
            vehicle_id
            for vehicle_id in {r.vehicle_id for r in records}
            if self.ownership.is_owned_by_account(vehicle_id, account_id)
        }
        by_id = {r.id: r for r in records if r.vehicle_id in owned}
        for requested in ids:
            if requested not in by_id:
                raise NotFoundError(f"Service interval with id {requested} not found")
        ordered = [by_id[i] for i in dict.fromkeys(ids)]
        return self._enrich_all(account_id, ordered, today or date.today())

    # =========================================================================
    # Manual override
    # =========================================================================

    def update(
        self,
        account_id: str,
        interval_id: str,
        today: Optional[date] = None,
        **params,
    ) -> IntervalView:
        """
        Overwrite next_due_date and/or next_due_odometer by hand.

        next_due_odometer is in the account's distance unit; None clears a
        value. The next expense event or rebuild replaces the override.
        """
        if isinstance(params.get("next_due_date"), date):
            params["next_due_date"] = params["next_due_date"].isoformat()
        validate_params(params, UPDATE_PARAMS_SCHEMA)

        values = {}
        if "next_due_date" in params:
            raw = params["next_due_date"]
            values["next_due_date"] = None if raw is None else parse_date(raw, "next_due_date")

        records = self._fetch([interval_id])
        if not records or not self.ownership.is_owned_by_account(
            records[0].vehicle_id, account_id
        ):
            raise NotFoundError()
        record = records[0]

        if "next_due_odometer" in params:
            unit = self.preferences.preferred_distance_unit(account_id)
            values["next_due_odometer_km"] = to_metric(params["next_due_odometer"], unit)

        with self.store.transaction() as conn:
            self.store.lock_pair(conn, record.vehicle_id, record.kind_id)
            result = conn.execute(
                sql_update(service_intervals)
                .where(service_intervals.c.id == interval_id)
                .values(**values)
            )
            if result.rowcount == 0:
                raise NotFoundError()
        logger.info("Manual next-due override on %s: %s", interval_id, sorted(values))

        for name, value in values.items():
            setattr(record, name, value)
        return self._enrich_all(account_id, [record], today or date.today())[0]
