#!/usr/bin/env python3
"""Tests for IntervalSettingsBook."""

from datetime import date

import pytest

from conftest import OIL, TIRES, WIPERS, interval_rows
from service_intervals import IntervalType, NotFoundError, ValidationFailedError


class TestGet:
    """Tests for the merged settings view."""

    def test_default_in_km(self, settings_book):
        merged = settings_book.get("acct-1", "car-1", OIL)
        assert merged.interval_type == IntervalType.MILEAGE_OR_DAYS
        assert merged.mileage_interval == 8000
        assert merged.days_interval == 180
        assert merged.distance_unit == "km"
        assert not merged.is_customized
        assert merged.has_default

    def test_default_in_miles(self, settings_book):
        merged = settings_book.get("acct-2", "car-3", TIRES)
        assert merged.distance_unit == "mi"
        assert merged.mileage_interval == 6214

    def test_no_default(self, settings_book):
        merged = settings_book.get("acct-1", "car-1", WIPERS)
        assert merged.interval_type == IntervalType.NONE
        assert not merged.has_default

    def test_foreign_vehicle(self, settings_book):
        with pytest.raises(NotFoundError):
            settings_book.get("acct-2", "car-1", OIL)


class TestOverride:
    """Tests for per-vehicle customization."""

    def test_entered_value_returned_as_entered(self, settings_book):
        merged = settings_book.set_override(
            "acct-2", "car-3", OIL, "MILEAGE_ONLY", mileage_interval=3000
        )
        assert merged.is_customized
        assert merged.interval_type == IntervalType.MILEAGE_ONLY
        assert merged.mileage_interval == 3000

    def test_stored_in_km(self, store, expense_book, settings_book):
        expense_book.add("car-3", OIL, date(2024, 1, 1), 10000)
        settings_book.set_override("acct-2", "car-3", OIL, "MILEAGE_ONLY", mileage_interval=3000)
        (row,) = interval_rows(store)
        assert row["mileage_interval_km"] == pytest.approx(4828.032)
        assert row["next_due_odometer_km"] == pytest.approx(14828.032)

    def test_replaces_previous_override(self, settings_book):
        settings_book.set_override("acct-1", "car-1", OIL, "DAYS_ONLY", days_interval=90)
        merged = settings_book.set_override(
            "acct-1", "car-1", OIL, "MILEAGE_ONLY", mileage_interval=6000
        )
        assert merged.interval_type == IntervalType.MILEAGE_ONLY
        assert merged.mileage_interval == 6000

    def test_invalid_type(self, settings_book):
        with pytest.raises(ValidationFailedError) as exc:
            settings_book.set_override("acct-1", "car-1", OIL, "WEEKLY")
        assert exc.value.messages_for("interval_type")

    def test_negative_interval(self, settings_book):
        with pytest.raises(ValidationFailedError) as exc:
            settings_book.set_override("acct-1", "car-1", OIL, "DAYS_ONLY", days_interval=-1)
        assert exc.value.messages_for("days_interval")

    def test_foreign_vehicle(self, settings_book):
        with pytest.raises(NotFoundError):
            settings_book.set_override("acct-2", "car-1", OIL, "NONE")

    def test_remove_restores_default(self, store, expense_book, settings_book):
        expense_book.add("car-1", OIL, date(2024, 1, 1), 50000)
        settings_book.set_override("acct-1", "car-1", OIL, "NONE")
        assert interval_rows(store) == []

        merged = settings_book.remove_override("acct-1", "car-1", OIL)

        assert not merged.is_customized
        assert merged.interval_type == IntervalType.MILEAGE_OR_DAYS
        (row,) = interval_rows(store)
        assert row["next_due_odometer_km"] == 58000

    def test_remove_without_override(self, settings_book):
        with pytest.raises(NotFoundError):
            settings_book.remove_override("acct-1", "car-1", OIL)

    def test_override_can_be_set_again_after_removal(self, settings_book):
        settings_book.set_override("acct-1", "car-1", OIL, "DAYS_ONLY", days_interval=30)
        settings_book.remove_override("acct-1", "car-1", OIL)
        merged = settings_book.set_override("acct-1", "car-1", OIL, "DAYS_ONLY", days_interval=60)
        assert merged.is_customized
        assert merged.days_interval == 60


class TestDefault:
    """Tests for kind-level defaults."""

    def test_recomputes_every_vehicle(self, store, expense_book, settings_book):
        expense_book.add("car-1", TIRES, date(2024, 1, 1), 50000)
        expense_book.add("car-3", TIRES, date(2024, 1, 1), 20000)

        touched = settings_book.set_default(TIRES, "MILEAGE_ONLY", mileage_interval_km=12000)

        assert touched == 2
        assert [r["next_due_odometer_km"] for r in interval_rows(store)] == [62000, 32000]

    def test_override_still_wins(self, store, expense_book, settings_book):
        expense_book.add("car-1", TIRES, date(2024, 1, 1), 50000)
        settings_book.set_override("acct-1", "car-1", TIRES, "MILEAGE_ONLY", mileage_interval=5000)

        settings_book.set_default(TIRES, "MILEAGE_ONLY", mileage_interval_km=12000)

        (row,) = interval_rows(store)
        assert row["next_due_odometer_km"] == 55000

    def test_new_default_starts_tracking(self, store, expense_book, settings_book):
        expense_book.add("car-1", WIPERS, date(2024, 1, 1), 50000)
        assert interval_rows(store) == []

        settings_book.set_default(WIPERS, "DAYS_ONLY", days_interval=180)

        (row,) = interval_rows(store)
        assert row["next_due_date"] == date(2024, 6, 29)

    def test_inactive_default_stops_tracking(self, store, expense_book, settings_book):
        expense_book.add("car-1", TIRES, date(2024, 1, 1), 50000)
        settings_book.set_default(TIRES, "MILEAGE_ONLY", mileage_interval_km=10000, is_active=False)
        assert interval_rows(store) == []
