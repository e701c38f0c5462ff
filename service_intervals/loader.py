"""YAML seed loading for maintenance kinds, defaults, vehicles and accounts."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from jsonschema import ValidationError, validate
from sqlalchemy import select
from sqlalchemy.engine import Connection

from .errors import ConfigError
from .interval_type import IntervalType
from .maintainer import IncrementalMaintainer
from .store import (
    Store,
    account_preferences,
    expenses,
    interval_defaults,
    maintenance_kinds,
    service_intervals,
    upsert_insert,
    vehicles,
)

logger = logging.getLogger(__name__)

DEFAULT_SEED = Path(__file__).parent / "seeds" / "defaults.yaml"


@dataclass
class SeedSummary:
    kinds: int = 0
    defaults: int = 0
    vehicles: int = 0
    accounts: int = 0
    # Derived rows recomputed because a kind's rule changed
    refreshed: int = 0


def load_schema() -> dict:
    """Load the JSON schema from schema.yaml."""
    schema_path = Path(__file__).parent / "schema.yaml"
    with open(schema_path) as f:
        return yaml.safe_load(f)


def validate_seed(data: Any, schema: dict) -> List[str]:
    """Validate parsed seed data. Returns list of errors."""
    errors = []
    try:
        validate(instance=data, schema=schema)
    except ValidationError as e:
        errors.append(f"Schema validation error: {e.message}")
        if e.path:
            errors.append(f"  at path: {'.'.join(str(p) for p in e.path)}")
    return errors


def load_seed(filename: Union[str, Path]) -> Dict[str, Any]:
    """Read and validate a seed file; raises ConfigError listing the problems."""
    try:
        with open(filename, "rb") as fp:
            data = yaml.load(fp, Loader=yaml.SafeLoader)
    except OSError as e:
        raise ConfigError(f"Cannot read seed file {filename}: {e}")
    except yaml.YAMLError as e:
        raise ConfigError(f"YAML parse error in {filename}: {e}")
    errors = validate_seed(data, load_schema())
    if errors:
        raise ConfigError(f"Invalid seed file {filename}:\n" + "\n".join(errors))
    return data


def _upsert(conn, table, values: Dict[str, Any], keys: List[str]) -> None:
    stmt = upsert_insert(conn)(table).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c[k] for k in keys],
        set_={k: stmt.excluded[k] for k in values if k not in keys},
    )
    conn.execute(stmt)


def _kind_rule(conn: Connection, kind_id: int) -> Optional[Tuple]:
    """Everything about a kind that decides whether and how it is tracked."""
    kind = conn.execute(
        select(maintenance_kinds.c.can_schedule, maintenance_kinds.c.is_active).where(
            maintenance_kinds.c.id == kind_id
        )
    ).first()
    if kind is None:
        return None
    default = conn.execute(
        select(
            interval_defaults.c.interval_type,
            interval_defaults.c.mileage_interval,
            interval_defaults.c.days_interval,
            interval_defaults.c.is_active,
        ).where(interval_defaults.c.kind_id == kind_id)
    ).first()
    return tuple(kind) + (tuple(default) if default is not None else (None,))


def _refresh_kind(conn: Connection, maintainer: IncrementalMaintainer, kind_id: int) -> int:
    """Recompute every vehicle with history or a derived row for the kind."""
    vehicle_ids = set(
        conn.execute(
            select(expenses.c.vehicle_id).where(expenses.c.kind_id == kind_id).distinct()
        ).scalars()
    )
    vehicle_ids.update(
        conn.execute(
            select(service_intervals.c.vehicle_id).where(service_intervals.c.kind_id == kind_id)
        ).scalars()
    )
    for vehicle_id in sorted(vehicle_ids):
        maintainer.on_interval_settings_changed(vehicle_id, kind_id, conn=conn)
    return len(vehicle_ids)


def apply_seed(store: Store, data: Dict[str, Any]) -> SeedSummary:
    """
    Upsert seed data into the store in one transaction.

    Kinds whose schedulability or default rule changed have their derived
    rows recomputed in the same transaction.
    """
    summary = SeedSummary()
    maintainer = IncrementalMaintainer(store)
    with store.transaction() as conn:
        changed = []
        for kind in data.get("kinds") or []:
            before = _kind_rule(conn, kind["id"])

            _upsert(
                conn,
                maintenance_kinds,
                {
                    "id": kind["id"],
                    "code": kind["code"],
                    "name": kind["name"],
                    "can_schedule": kind.get("canSchedule", False),
                    "is_active": kind.get("active", True),
                },
                ["id"],
            )
            summary.kinds += 1

            default = kind.get("default")
            if default is not None:
                _upsert(
                    conn,
                    interval_defaults,
                    {
                        "kind_id": kind["id"],
                        "interval_type": int(IntervalType.parse(default["intervalType"])),
                        "mileage_interval": default.get("mileageKm", 0),
                        "days_interval": default.get("days", 0),
                        "is_active": default.get("active", True),
                    },
                    ["kind_id"],
                )
                summary.defaults += 1

            if before is not None and _kind_rule(conn, kind["id"]) != before:
                changed.append(kind["id"])

        for kind_id in changed:
            summary.refreshed += _refresh_kind(conn, maintainer, kind_id)

        for vehicle in data.get("vehicles") or []:
            _upsert(
                conn,
                vehicles,
                {
                    "id": vehicle["id"],
                    "account_id": vehicle["account"],
                    "is_active": vehicle.get("active", True),
                },
                ["id"],
            )
            summary.vehicles += 1

        for account in data.get("accounts") or []:
            _upsert(
                conn,
                account_preferences,
                {
                    "account_id": account["id"],
                    "distance_unit": account.get("distanceUnit", "km"),
                    "notify_in_days": account.get("notifyInDays"),
                    "notify_in_mileage": account.get("notifyInMileage"),
                },
                ["account_id"],
            )
            summary.accounts += 1

    logger.info(
        "Seeded %d kinds, %d defaults, %d vehicles, %d accounts",
        summary.kinds,
        summary.defaults,
        summary.vehicles,
        summary.accounts,
    )
    if summary.refreshed:
        logger.info("Recomputed %d service intervals after rule changes", summary.refreshed)
    return summary


def seed_from_file(store: Store, filename: Union[str, Path] = DEFAULT_SEED) -> SeedSummary:
    return apply_seed(store, load_seed(filename))
