#!/usr/bin/env python3
"""Tests for QueryService reads and manual overrides."""

from datetime import date

import pytest

from conftest import INSPECTION, OIL, TIRES, interval_rows
from service_intervals import (
    IntervalType,
    NotFoundError,
    QueryService,
    Urgency,
    ValidationFailedError,
    interval_id,
)
from service_intervals.units import MILES_TO_KM

TODAY = date(2024, 6, 20)


@pytest.fixture
def garage(expense_book):
    """car-1/car-2 belong to acct-1 (km), car-3 to acct-2 (mi)."""
    expense_book.add("car-1", OIL, date(2024, 1, 1), 50000)
    expense_book.add("car-1", TIRES, date(2024, 3, 1), 57700)
    expense_book.add("car-2", INSPECTION, date(2023, 6, 1), None)
    expense_book.add("car-3", OIL, date(2024, 1, 1), 10000 * MILES_TO_KM)


# =============================================================================
# list
# =============================================================================


class TestList:
    """Tests for listing an account's intervals."""

    def test_sorted_by_vehicle_then_due_date(self, query, garage):
        views = query.list("acct-1", today=TODAY)
        assert [(v.vehicle_id, v.kind_id) for v in views] == [
            ("car-1", OIL),
            ("car-1", TIRES),
            ("car-2", INSPECTION),
        ]

    def test_undated_sorted_last(self, query, expense_book, garage):
        expense_book.add("car-1", INSPECTION, date(2024, 5, 1), 57000)
        views = query.list("acct-1", vehicle_ids=["car-1"], today=TODAY)
        assert [v.kind_id for v in views] == [OIL, INSPECTION, TIRES]
        assert views[-1].next_due_date is None

    def test_enrichment_in_km(self, query, garage):
        oil, tires, inspection = query.list("acct-1", today=TODAY)

        assert oil.distance_unit == "km"
        assert oil.interval_type == IntervalType.MILEAGE_OR_DAYS
        assert oil.mileage_interval == 8000
        assert oil.days_interval == 180
        assert oil.next_due_date == date(2024, 6, 29)
        assert oil.next_due_odometer == 58000
        assert oil.remaining_days == 9
        # Current odometer is the vehicle's highest reading, 57,700
        assert oil.remaining_mileage == 300
        assert oil.urgency == Urgency.DUE_SOON
        assert oil.is_due

        assert tires.remaining_days is None
        assert tires.remaining_mileage == 10000
        assert tires.urgency == Urgency.UPCOMING

        assert inspection.remaining_days == -20
        assert inspection.next_due_odometer is None
        assert inspection.urgency == Urgency.OVERDUE

    def test_enrichment_in_miles(self, query, garage):
        (oil,) = query.list("acct-2", today=TODAY)

        assert oil.distance_unit == "mi"
        assert oil.mileage_interval == 4971
        assert oil.max_odometer == 10000
        assert oil.next_due_odometer == 14971
        assert oil.remaining_mileage == 4971
        # acct-2 is warned 30 days ahead
        assert oil.urgency == Urgency.DUE_SOON

    def test_unknown_current_odometer_counts_as_zero(self, store, ownership, preferences, garage):
        class NoMileage:
            def max_known_odometer_km(self, vehicle_ids):
                return {}

        service = QueryService(store, ownership, NoMileage(), preferences)
        (oil,) = service.list("acct-1", kind_ids=[OIL], today=TODAY)
        assert oil.remaining_mileage == 58000

    def test_urgency_filter(self, query, garage):
        views = query.list("acct-1", urgency=["overdue", "due_soon"], today=TODAY)
        assert [(v.vehicle_id, v.urgency) for v in views] == [
            ("car-1", Urgency.DUE_SOON),
            ("car-2", Urgency.OVERDUE),
        ]

    def test_unknown_urgency_rejected(self, query, garage):
        with pytest.raises(ValidationFailedError) as exc:
            query.list("acct-1", urgency=["late"])
        assert exc.value.messages_for("urgency")

    def test_kind_and_type_filters(self, query, garage):
        assert [v.kind_id for v in query.list("acct-1", kind_ids=[TIRES], today=TODAY)] == [TIRES]
        views = query.list("acct-1", interval_types=[IntervalType.DAYS_ONLY], today=TODAY)
        assert [v.kind_id for v in views] == [INSPECTION]

    def test_type_filter_by_name(self, query, garage):
        views = query.list("acct-1", interval_types=["DAYS_ONLY"], today=TODAY)
        assert [v.kind_id for v in views] == [INSPECTION]

    def test_unknown_type_rejected(self, query, garage):
        for bad in (["abc"], [7]):
            with pytest.raises(ValidationFailedError) as exc:
                query.list("acct-1", interval_types=bad)
            assert exc.value.messages_for("interval_types")

    def test_foreign_vehicles_dropped(self, query, garage):
        views = query.list("acct-1", vehicle_ids=["car-1", "car-3"], today=TODAY)
        assert {v.vehicle_id for v in views} == {"car-1"}
        assert query.list("acct-1", vehicle_ids=["car-3"], today=TODAY) == []

    def test_inactive_vehicles_hidden(self, query, expense_book, garage):
        expense_book.add("car-old", OIL, date(2024, 1, 1), 1000)
        assert "car-old" not in {v.vehicle_id for v in query.list("acct-1", today=TODAY)}

    def test_account_without_vehicles(self, query, garage):
        assert query.list("nobody", today=TODAY) == []


# =============================================================================
# get / get_many
# =============================================================================


class TestGet:
    """Tests for fetching by id."""

    def test_get(self, query, garage):
        view = query.get("acct-1", interval_id("car-1", OIL), today=TODAY)
        assert view.vehicle_id == "car-1"
        assert view.urgency == Urgency.DUE_SOON

    def test_foreign_and_missing_look_the_same(self, query, garage):
        with pytest.raises(NotFoundError):
            query.get("acct-2", interval_id("car-1", OIL))
        with pytest.raises(NotFoundError):
            query.get("acct-1", "no-such-id")

    def test_get_many_keeps_requested_order(self, query, garage):
        ids = [interval_id("car-2", INSPECTION), interval_id("car-1", OIL)]
        views = query.get_many("acct-1", ids, today=TODAY)
        assert [v.id for v in views] == ids

    def test_get_many_fails_on_any_missing(self, query, garage):
        with pytest.raises(NotFoundError):
            query.get_many("acct-1", [interval_id("car-1", OIL), "no-such-id"])
        with pytest.raises(NotFoundError):
            query.get_many("acct-1", [interval_id("car-1", OIL), interval_id("car-3", OIL)])

    def test_get_many_empty(self, query, garage):
        assert query.get_many("acct-1", []) == []


# =============================================================================
# update
# =============================================================================


class TestUpdate:
    """Tests for manual next-due overrides."""

    def test_override_date(self, store, query, garage):
        view = query.update(
            "acct-1", interval_id("car-1", OIL), today=TODAY, next_due_date="2024-12-01"
        )
        assert view.next_due_date == date(2024, 12, 1)
        assert view.next_due_odometer == 58000
        # Still due soon on mileage (300 km left)
        assert view.urgency == Urgency.DUE_SOON

        row = [r for r in interval_rows(store) if r["id"] == interval_id("car-1", OIL)][0]
        assert row["next_due_date"] == date(2024, 12, 1)

    def test_override_accepts_date_objects(self, query, garage):
        view = query.update(
            "acct-1", interval_id("car-1", OIL), today=TODAY, next_due_date=date(2025, 1, 1)
        )
        assert view.next_due_date == date(2025, 1, 1)

    def test_override_odometer_in_account_unit(self, store, query, garage):
        view = query.update("acct-2", interval_id("car-3", OIL), next_due_odometer=20000)
        assert view.next_due_odometer == 20000

        row = [r for r in interval_rows(store) if r["id"] == interval_id("car-3", OIL)][0]
        assert row["next_due_odometer_km"] == pytest.approx(20000 * MILES_TO_KM)

    def test_none_clears(self, query, garage):
        view = query.update(
            "acct-1",
            interval_id("car-1", OIL),
            today=TODAY,
            next_due_date=None,
            next_due_odometer=None,
        )
        assert view.next_due_date is None
        assert view.next_due_odometer is None
        assert view.urgency == Urgency.OK

    def test_next_expense_replaces_override(self, query, expense_book, garage):
        query.update("acct-1", interval_id("car-1", OIL), next_due_date="2030-01-01")
        expense_book.add("car-1", OIL, date(2023, 1, 1), 1000)
        view = query.get("acct-1", interval_id("car-1", OIL), today=TODAY)
        assert view.next_due_date == date(2024, 6, 29)

    def test_no_fields(self, query, garage):
        with pytest.raises(ValidationFailedError):
            query.update("acct-1", interval_id("car-1", OIL))

    def test_unknown_field(self, query, garage):
        with pytest.raises(ValidationFailedError):
            query.update("acct-1", interval_id("car-1", OIL), max_service_date="2024-01-01")

    def test_negative_odometer(self, query, garage):
        with pytest.raises(ValidationFailedError) as exc:
            query.update("acct-1", interval_id("car-1", OIL), next_due_odometer=-1)
        assert exc.value.messages_for("next_due_odometer")

    def test_bad_date(self, query, garage):
        with pytest.raises(ValidationFailedError) as exc:
            query.update("acct-1", interval_id("car-1", OIL), next_due_date="someday")
        assert exc.value.messages_for("next_due_date")

    def test_foreign_interval(self, query, garage):
        with pytest.raises(NotFoundError):
            query.update("acct-2", interval_id("car-1", OIL), next_due_date="2024-12-01")
