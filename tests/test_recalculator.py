#!/usr/bin/env python3
"""Tests for FullRecalculator and its agreement with the incremental path."""

from datetime import date

import pytest
from sqlalchemy import delete

from conftest import INSPECTION, OIL, TIMING_BELT, TIRES, WASH, WIPERS, interval_rows
from service_intervals import FullRecalculator, recalculator as recalculator_module
from service_intervals.store import service_intervals


@pytest.fixture
def history(expense_book, settings_book):
    """A mixed sequence of creates, edits, moves, removals and overrides."""
    a = expense_book.add("car-1", OIL, date(2024, 1, 1), 50000)
    expense_book.add("car-1", OIL, date(2024, 2, 1), 49000)
    b = expense_book.add("car-1", OIL, date(2024, 3, 15), 53000)
    expense_book.add("car-1", TIRES, date(2023, 11, 20), None)
    expense_book.add("car-1", TIRES, date(2023, 5, 2), 41000)
    expense_book.add("car-1", WASH, date(2024, 3, 1), 52000)
    expense_book.add("car-1", WIPERS, date(2024, 1, 10), 50500)
    expense_book.add("car-2", INSPECTION, date(2023, 9, 30), 12000)
    c = expense_book.add("car-2", OIL, date(2024, 4, 1), 15000)
    expense_book.add("car-3", TIMING_BELT, date(2020, 6, 1), 90000)
    expense_book.add("car-3", OIL, date(2024, 1, 5), 70000, is_active=False)

    expense_book.update(a.id, odometer_km=50500)
    expense_book.remove(b.id)
    expense_book.update(c.id, kind_id=TIRES)
    expense_book.update(c.id, vehicle_id="car-1")
    settings_book.set_override("acct-1", "car-2", INSPECTION, "NONE")
    settings_book.set_override("acct-2", "car-3", TIMING_BELT, "MILEAGE_OR_DAYS", 60000, 1000)


class TestRecalculateAll:
    """Tests for the system-wide rebuild."""

    def test_matches_incremental_state(self, store, recalculator, history):
        """Rebuilding from history reproduces what the events maintained."""
        incremental = interval_rows(store)
        assert incremental

        written = recalculator.recalculate_all()

        assert written == len(incremental)
        assert interval_rows(store) == incremental

    def test_idempotent(self, store, recalculator, history):
        recalculator.recalculate_all()
        first = interval_rows(store)
        recalculator.recalculate_all()
        assert interval_rows(store) == first

    def test_repairs_drift(self, store, recalculator, history):
        expected = interval_rows(store)
        with store.transaction() as conn:
            conn.execute(delete(service_intervals).where(service_intervals.c.vehicle_id == "car-1"))
            conn.execute(service_intervals.update().values(next_due_date=date(1999, 1, 1)))

        recalculator.recalculate_all()

        assert interval_rows(store) == expected

    def test_none_and_unschedulable_have_no_rows(self, store, recalculator, history):
        recalculator.recalculate_all()
        pairs = {(r["vehicle_id"], r["kind_id"]) for r in interval_rows(store)}
        assert ("car-2", INSPECTION) not in pairs
        assert ("car-1", WASH) not in pairs
        assert ("car-1", WIPERS) not in pairs
        # Only an inactive expense for this pair
        assert ("car-3", OIL) not in pairs

    def test_empty_history(self, store, recalculator):
        assert recalculator.recalculate_all() == 0
        assert interval_rows(store) == []

    def test_failure_keeps_previous_rows(self, store, recalculator, history, monkeypatch):
        before = interval_rows(store)

        def explode(self, conn, kind_ids):
            raise RuntimeError("boom")

        monkeypatch.setattr(FullRecalculator, "_compute_all", explode)
        with pytest.raises(RuntimeError):
            recalculator.recalculate_all()

        assert interval_rows(store) == before


class TestRecalculateForVehicle:
    """Tests for the per-vehicle rebuild."""

    def test_matches_incremental_state(self, store, recalculator, history):
        expected = [r for r in interval_rows(store) if r["vehicle_id"] == "car-1"]

        records = recalculator.recalculate_for_vehicle("car-1")

        assert sorted(r.kind_id for r in records) == [r["kind_id"] for r in expected]
        assert [r for r in interval_rows(store) if r["vehicle_id"] == "car-1"] == expected

    def test_leaves_other_vehicles_alone(self, store, recalculator, history):
        others = [r for r in interval_rows(store) if r["vehicle_id"] != "car-1"]
        with store.transaction() as conn:
            conn.execute(
                service_intervals.update()
                .where(service_intervals.c.vehicle_id == "car-1")
                .values(next_due_odometer_km=1)
            )

        recalculator.recalculate_for_vehicle("car-1")

        assert [r for r in interval_rows(store) if r["vehicle_id"] != "car-1"] == others
        assert all(r["next_due_odometer_km"] != 1 for r in interval_rows(store))

    def test_vehicle_without_history(self, store, recalculator, history):
        assert recalculator.recalculate_for_vehicle("car-old") == []

    def test_failure_keeps_previous_rows(self, store, recalculator, history, monkeypatch):
        before = interval_rows(store)
        real_rescan = recalculator_module.rescan_and_recompute
        calls = []

        def fail_on_second(*args):
            calls.append(args)
            if len(calls) == 2:
                raise RuntimeError("boom")
            return real_rescan(*args)

        monkeypatch.setattr(recalculator_module, "rescan_and_recompute", fail_on_second)
        with pytest.raises(RuntimeError):
            recalculator.recalculate_for_vehicle("car-1")

        assert len(calls) == 2
        assert interval_rows(store) == before
