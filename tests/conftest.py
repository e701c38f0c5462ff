"""Shared fixtures: a seeded SQLite store and the services built on it."""

from typing import Any, Dict, List

import pytest
from sqlalchemy import select

from service_intervals import (
    ExpenseBook,
    FullRecalculator,
    IncrementalMaintainer,
    IntervalSettingsBook,
    IntervalSettingsResolver,
    QueryService,
    Store,
    StoreCurrentMileage,
    StoreUnitPreferences,
    StoreVehicleOwnership,
)
from service_intervals.loader import apply_seed
from service_intervals.store import service_intervals

OIL = 1
TIRES = 2
INSPECTION = 3
WASH = 4
WIPERS = 5
TIMING_BELT = 6

SEED = {
    "kinds": [
        {
            "id": OIL,
            "code": "oil_change",
            "name": "Oil change",
            "canSchedule": True,
            "default": {"intervalType": "MILEAGE_OR_DAYS", "mileageKm": 8000, "days": 180},
        },
        {
            "id": TIRES,
            "code": "tire_rotation",
            "name": "Tire rotation",
            "canSchedule": True,
            "default": {"intervalType": "MILEAGE_ONLY", "mileageKm": 10000},
        },
        {
            "id": INSPECTION,
            "code": "inspection",
            "name": "Inspection",
            "canSchedule": True,
            "default": {"intervalType": "DAYS_ONLY", "days": 365},
        },
        {"id": WASH, "code": "car_wash", "name": "Car wash", "canSchedule": False},
        {"id": WIPERS, "code": "wipers", "name": "Wipers", "canSchedule": True},
        {
            "id": TIMING_BELT,
            "code": "timing_belt",
            "name": "Timing belt",
            "canSchedule": True,
            "default": {
                "intervalType": "MILEAGE_AND_DAYS",
                "mileageKm": 100000,
                "days": 1825,
            },
        },
    ],
    "vehicles": [
        {"id": "car-1", "account": "acct-1"},
        {"id": "car-2", "account": "acct-1"},
        {"id": "car-old", "account": "acct-1", "active": False},
        {"id": "car-3", "account": "acct-2"},
    ],
    "accounts": [
        {"id": "acct-1", "distanceUnit": "km"},
        {"id": "acct-2", "distanceUnit": "mi", "notifyInDays": 30, "notifyInMileage": 300},
    ],
}


def interval_rows(store: Store) -> List[Dict[str, Any]]:
    """Every derived row, ordered, as plain dicts."""
    with store.engine.connect() as conn:
        rows = conn.execute(
            select(service_intervals).order_by(
                service_intervals.c.vehicle_id, service_intervals.c.kind_id
            )
        ).mappings()
        return [dict(row) for row in rows]


@pytest.fixture
def store(tmp_path):
    store = Store(f"sqlite:///{tmp_path / 'intervals.db'}")
    store.create_schema()
    apply_seed(store, SEED)
    yield store
    store.dispose()


@pytest.fixture
def resolver():
    return IntervalSettingsResolver()


@pytest.fixture
def maintainer(store, resolver):
    return IncrementalMaintainer(store, resolver)


@pytest.fixture
def recalculator(store, resolver):
    return FullRecalculator(store, resolver)


@pytest.fixture
def ownership(store):
    return StoreVehicleOwnership(store)


@pytest.fixture
def preferences(store):
    return StoreUnitPreferences(store)


@pytest.fixture
def expense_book(store, maintainer):
    return ExpenseBook(store, maintainer)


@pytest.fixture
def settings_book(store, maintainer, ownership, preferences):
    return IntervalSettingsBook(store, maintainer, ownership, preferences)


@pytest.fixture
def query(store, ownership, preferences):
    return QueryService(store, ownership, StoreCurrentMileage(store), preferences)
