"""
Service interval engine.

This package keeps next-due maintenance records in step with a vehicle's
expense history:
- IntervalType / Urgency: How tracking combines, and how pressing a service is
- IntervalSettingsResolver: Override, kind default, or no tracking
- IncrementalMaintainer: Event-driven upkeep of one (vehicle, kind) row
- FullRecalculator: Rebuild one vehicle or everything from scratch
- QueryService: Enriched reads, filters and manual overrides
- ExpenseBook / IntervalSettingsBook: Writes that drive the events above
"""

from .interval_type import IntervalType
from .urgency import Urgency
from .interval_settings import IntervalSettings, NO_TRACKING
from .expense import MaintenanceExpense
from .service_interval import IntervalView, ServiceInterval, interval_id
from .calculations import (
    calc_next_due_date,
    calc_next_due_odometer,
    calc_remaining_days,
    calc_remaining_km,
    classify_urgency,
)
from .errors import ConfigError, NotFoundError, ServiceIntervalError, ValidationFailedError
from .store import Store
from .resolver import IntervalSettingsResolver
from .maintainer import IncrementalMaintainer
from .recalculator import FullRecalculator
from .collaborators import (
    NotifyThresholds,
    StoreCurrentMileage,
    StoreUnitPreferences,
    StoreVehicleOwnership,
)
from .query import QueryService
from .expense_book import ExpenseBook
from .settings_book import IntervalSettingsBook, MergedSettings
from .config import Config, load_config
from .loader import load_seed, seed_from_file

__all__ = [
    "IntervalType",
    "Urgency",
    "IntervalSettings",
    "NO_TRACKING",
    "MaintenanceExpense",
    "ServiceInterval",
    "IntervalView",
    "interval_id",
    "calc_next_due_date",
    "calc_next_due_odometer",
    "calc_remaining_days",
    "calc_remaining_km",
    "classify_urgency",
    "ServiceIntervalError",
    "NotFoundError",
    "ValidationFailedError",
    "ConfigError",
    "Store",
    "IntervalSettingsResolver",
    "IncrementalMaintainer",
    "FullRecalculator",
    "NotifyThresholds",
    "StoreVehicleOwnership",
    "StoreCurrentMileage",
    "StoreUnitPreferences",
    "QueryService",
    "ExpenseBook",
    "IntervalSettingsBook",
    "MergedSettings",
    "Config",
    "load_config",
    "load_seed",
    "seed_from_file",
]
