"""Per-vehicle overrides and kind-level defaults for interval settings."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update

from .collaborators import UnitPreferences, VehicleOwnership
from .errors import NotFoundError, ValidationFailedError
from .interval_type import IntervalType
from .maintainer import IncrementalMaintainer
from .store import (
    Store,
    expenses,
    interval_defaults,
    interval_overrides,
    service_intervals,
    upsert_insert,
)
from .units import KM, from_metric_rounded, to_metric
from .validation import INTERVAL_SETTINGS_SCHEMA, validate_params

logger = logging.getLogger(__name__)


@dataclass
class MergedSettings:
    """Settings for a vehicle and kind as an account sees them."""

    vehicle_id: str
    kind_id: int
    interval_type: IntervalType
    mileage_interval: float
    days_interval: int
    distance_unit: str
    is_customized: bool
    has_default: bool


class IntervalSettingsBook:
    """
    Manage tracking rules.

    Every change recomputes the affected derived rows in the same
    transaction.
    """

    def __init__(
        self,
        store: Store,
        maintainer: IncrementalMaintainer,
        ownership: VehicleOwnership,
        preferences: UnitPreferences,
    ):
        self.store = store
        self.maintainer = maintainer
        self.ownership = ownership
        self.preferences = preferences

    def _require_vehicle(self, account_id: str, vehicle_id: str) -> None:
        if not self.ownership.is_owned_by_account(vehicle_id, account_id):
            raise NotFoundError(f"Vehicle {vehicle_id} not found")

    def get(self, account_id: str, vehicle_id: str, kind_id: int) -> MergedSettings:
        """
        Merged view: override if present, else default, else NONE.

        An override entered in the account's current unit is returned
        exactly as entered; otherwise the km value is converted and rounded.
        """
        self._require_vehicle(account_id, vehicle_id)
        unit = self.preferences.preferred_distance_unit(account_id)
        with self.store.engine.connect() as conn:
            override = conn.execute(
                select(interval_overrides).where(
                    interval_overrides.c.vehicle_id == vehicle_id,
                    interval_overrides.c.kind_id == kind_id,
                    interval_overrides.c.removed_at.is_(None),
                )
            ).first()
            default = conn.execute(
                select(interval_defaults).where(
                    interval_defaults.c.kind_id == kind_id,
                    interval_defaults.c.is_active.is_(True),
                )
            ).first()

        if override is not None:
            if override.distance_entered_in == unit:
                mileage = override.mileage_interval
            else:
                mileage = from_metric_rounded(override.mileage_interval_km, unit)
            interval_type, days = override.interval_type, override.days_interval
        elif default is not None:
            if unit == KM:
                mileage = default.mileage_interval
            else:
                mileage = from_metric_rounded(default.mileage_interval, unit)
            interval_type, days = default.interval_type, default.days_interval
        else:
            mileage, interval_type, days = 0, IntervalType.NONE, 0

        return MergedSettings(
            vehicle_id=vehicle_id,
            kind_id=kind_id,
            interval_type=IntervalType(interval_type),
            mileage_interval=mileage or 0,
            days_interval=days or 0,
            distance_unit=unit,
            is_customized=override is not None,
            has_default=default is not None,
        )

    def set_override(
        self,
        account_id: str,
        vehicle_id: str,
        kind_id: int,
        interval_type,
        mileage_interval: float = 0,
        days_interval: int = 0,
    ) -> MergedSettings:
        """Customize a vehicle's rule; mileage is in the account's unit."""
        try:
            interval_type = IntervalType.parse(interval_type)
        except (KeyError, ValueError):
            raise ValidationFailedError.single(
                "interval_type", f"Unknown interval type: {interval_type!r}"
            )
        validate_params(
            {
                "interval_type": int(interval_type),
                "mileage_interval": mileage_interval,
                "days_interval": days_interval,
            },
            INTERVAL_SETTINGS_SCHEMA,
        )
        self._require_vehicle(account_id, vehicle_id)
        unit = self.preferences.preferred_distance_unit(account_id)

        values = {
            "vehicle_id": vehicle_id,
            "kind_id": kind_id,
            "interval_type": int(interval_type),
            "mileage_interval": mileage_interval,
            "mileage_interval_km": to_metric(mileage_interval, unit),
            "distance_entered_in": unit,
            "days_interval": days_interval,
            "removed_at": None,
        }
        with self.store.transaction() as conn:
            stmt = upsert_insert(conn)(interval_overrides).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[interval_overrides.c.vehicle_id, interval_overrides.c.kind_id],
                set_={k: stmt.excluded[k] for k in values if k not in ("vehicle_id", "kind_id")},
            )
            conn.execute(stmt)
            self.maintainer.on_interval_settings_changed(vehicle_id, kind_id, conn=conn)
        logger.info(
            "Interval override for %s/%s set to %s", vehicle_id, kind_id, interval_type.name
        )
        return self.get(account_id, vehicle_id, kind_id)

    def remove_override(self, account_id: str, vehicle_id: str, kind_id: int) -> MergedSettings:
        """Drop a customization; the kind default (or NONE) applies again."""
        self._require_vehicle(account_id, vehicle_id)
        with self.store.transaction() as conn:
            result = conn.execute(
                update(interval_overrides)
                .where(
                    interval_overrides.c.vehicle_id == vehicle_id,
                    interval_overrides.c.kind_id == kind_id,
                    interval_overrides.c.removed_at.is_(None),
                )
                .values(removed_at=datetime.now(timezone.utc).replace(tzinfo=None))
            )
            if result.rowcount == 0:
                raise NotFoundError("Service interval customization not found")
            self.maintainer.on_interval_settings_changed(vehicle_id, kind_id, conn=conn)
        logger.info("Interval override for %s/%s removed", vehicle_id, kind_id)
        return self.get(account_id, vehicle_id, kind_id)

    def set_default(
        self,
        kind_id: int,
        interval_type,
        mileage_interval_km: float = 0,
        days_interval: int = 0,
        is_active: bool = True,
    ) -> int:
        """
        Set the kind-level rule (mileage in km) and recompute every vehicle
        that has history for the kind. Returns the number of pairs touched.
        """
        interval_type = IntervalType.parse(interval_type)
        validate_params(
            {
                "interval_type": int(interval_type),
                "mileage_interval": mileage_interval_km,
                "days_interval": days_interval,
            },
            INTERVAL_SETTINGS_SCHEMA,
        )
        values = {
            "kind_id": kind_id,
            "interval_type": int(interval_type),
            "mileage_interval": mileage_interval_km,
            "days_interval": days_interval,
            "is_active": is_active,
        }
        with self.store.transaction() as conn:
            stmt = upsert_insert(conn)(interval_defaults).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[interval_defaults.c.kind_id],
                set_={k: stmt.excluded[k] for k in values if k != "kind_id"},
            )
            conn.execute(stmt)
            vehicle_ids = set(
                conn.execute(
                    select(expenses.c.vehicle_id).where(expenses.c.kind_id == kind_id).distinct()
                ).scalars()
            )
            vehicle_ids.update(
                conn.execute(
                    select(service_intervals.c.vehicle_id).where(
                        service_intervals.c.kind_id == kind_id
                    )
                ).scalars()
            )
            for vehicle_id in sorted(vehicle_ids):
                self.maintainer.on_interval_settings_changed(vehicle_id, kind_id, conn=conn)
        logger.info(
            "Default interval for kind %s set to %s (%d vehicles)",
            kind_id,
            interval_type.name,
            len(vehicle_ids),
        )
        return len(vehicle_ids)
