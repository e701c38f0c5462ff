"""Resolve the effective interval settings for a vehicle and maintenance kind."""

from typing import List

from sqlalchemy import select
from sqlalchemy.engine import Connection

from .interval_settings import NO_TRACKING, IntervalSettings
from .interval_type import IntervalType
from .store import interval_defaults, interval_overrides, maintenance_kinds


class IntervalSettingsResolver:
    """
    Look up tracking rules and kind schedulability.

    Priority: vehicle override (not removed) > kind default (active) > none.
    Missing configuration is never an error; it resolves to NO_TRACKING.
    """

    def is_schedulable(self, conn: Connection, kind_id: int) -> bool:
        row = conn.execute(
            select(maintenance_kinds.c.can_schedule).where(
                maintenance_kinds.c.id == kind_id,
                maintenance_kinds.c.is_active.is_(True),
            )
        ).first()
        return bool(row and row.can_schedule)

    def schedulable_kind_ids(self, conn: Connection) -> List[int]:
        rows = conn.execute(
            select(maintenance_kinds.c.id)
            .where(
                maintenance_kinds.c.can_schedule.is_(True),
                maintenance_kinds.c.is_active.is_(True),
            )
            .order_by(maintenance_kinds.c.id)
        )
        return [row.id for row in rows]

    def resolve(self, conn: Connection, vehicle_id: str, kind_id: int) -> IntervalSettings:
        override = conn.execute(
            select(
                interval_overrides.c.interval_type,
                interval_overrides.c.mileage_interval_km,
                interval_overrides.c.days_interval,
            ).where(
                interval_overrides.c.vehicle_id == vehicle_id,
                interval_overrides.c.kind_id == kind_id,
                interval_overrides.c.removed_at.is_(None),
            )
        ).first()
        if override is not None:
            return IntervalSettings(
                IntervalType(override.interval_type),
                override.mileage_interval_km or 0,
                override.days_interval or 0,
            )

        default = conn.execute(
            select(
                interval_defaults.c.interval_type,
                interval_defaults.c.mileage_interval,
                interval_defaults.c.days_interval,
            ).where(
                interval_defaults.c.kind_id == kind_id,
                interval_defaults.c.is_active.is_(True),
            )
        ).first()
        if default is not None:
            return IntervalSettings(
                IntervalType(default.interval_type),
                default.mileage_interval or 0,
                default.days_interval or 0,
            )

        return NO_TRACKING
