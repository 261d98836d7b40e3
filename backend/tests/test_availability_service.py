"""
Availability evaluator and reservation conflict checker.

Reservations are created through the mutator so the tests see the same
rows production code does.
"""
from datetime import date

import pytest

from rentkit.services.availability_service import (
    check_availability,
    validate_reservation,
    day_summary,
    range_summary,
    max_future_reserved,
)
from rentkit.services.calendar_index import (
    ItemNotFoundError,
    active_reservations_touching,
)
from rentkit.validation import InvalidRangeError


def nov(day: int) -> date:
    return date(2025, 11, day)


@pytest.fixture
def chairs(make_item):
    return make_item("Chairs", 100)


class TestCheckAvailability:
    def test_free_item_is_available(self, chairs):
        result = check_availability(chairs, 100, nov(1), nov(30))
        assert result.ok
        assert result.violation is None
        assert result.to_dict() == {"available": True}

    def test_accepts_item_id(self, chairs):
        assert check_availability(chairs.id, 10, nov(1), nov(2)).ok

    def test_unknown_item_raises(self, db_session):
        with pytest.raises(ItemNotFoundError):
            check_availability(9999, 1, nov(1), nov(2))

    def test_inverted_range_raises(self, chairs):
        with pytest.raises(InvalidRangeError):
            check_availability(chairs, 1, nov(5), nov(4))

    def test_overlong_range_raises(self, app, chairs):
        app.config["MAX_RESERVATION_DAYS"] = 10
        try:
            with pytest.raises(InvalidRangeError):
                check_availability(chairs, 1, nov(1), nov(11))
            assert check_availability(chairs, 1, nov(1), nov(10)).ok
        finally:
            app.config["MAX_RESERVATION_DAYS"] = 730

    def test_overlap_reports_first_violating_day(self, chairs, reserve):
        # Chairs 100; A holds 40 for Nov 4-8; B asks 70 for Nov 6-11
        reserve([(chairs, 40)], nov(4), nov(8))

        result = check_availability(chairs, 70, nov(6), nov(11))

        assert not result.ok
        v = result.violation
        assert v.day == nov(6)
        assert v.item_id == chairs.id
        assert v.item_name == "Chairs"
        assert v.reserved == 40
        assert v.requested == 70
        assert v.available == 60
        assert v.total == 100

    def test_middle_day_is_binding_constraint(self, chairs, reserve):
        # Both endpoints free; only Nov 5 is short
        reserve([(chairs, 90)], nov(5), nov(5))

        result = check_availability(chairs, 20, nov(3), nov(7))

        assert not result.ok
        assert result.violation.day == nov(5)
        assert result.violation.available == 10

    def test_stops_at_first_violation(self, chairs, reserve):
        reserve([(chairs, 95)], nov(3), nov(3))
        reserve([(chairs, 99)], nov(6), nov(6))

        result = check_availability(chairs, 10, nov(1), nov(10))

        assert result.violation.day == nov(3)
        assert result.violation.reserved == 95

    def test_single_day_range_checks_exactly_that_day(self, chairs, reserve):
        reserve([(chairs, 100)], nov(14), nov(14))
        reserve([(chairs, 100)], nov(16), nov(16))

        assert check_availability(chairs, 100, nov(15), nov(15)).ok
        assert not check_availability(chairs, 1, nov(14), nov(14)).ok

    def test_next_day_range_checks_both_days(self, chairs, reserve):
        reserve([(chairs, 100)], nov(16), nov(16))

        result = check_availability(chairs, 1, nov(15), nov(16))

        assert result.violation.day == nov(16)

    def test_adjacent_reservations_do_not_conflict(self, chairs, reserve):
        reserve([(chairs, 100)], nov(1), nov(5))

        assert check_availability(chairs, 100, nov(6), nov(10)).ok
        assert not check_availability(chairs, 1, nov(5), nov(10)).ok

    def test_partial_overlap_within_stock(self, chairs, reserve):
        # 60 held Nov 1-5, 40 more for Nov 3-5 fills stock exactly
        reserve([(chairs, 60)], nov(1), nov(5))

        assert check_availability(chairs, 40, nov(3), nov(5)).ok
        assert not check_availability(chairs, 41, nov(3), nov(5)).ok

    def test_inactive_statuses_do_not_consume(self, chairs, reserve):
        reserve([(chairs, 100)], nov(1), nov(5), status="DRAFT")
        reserve([(chairs, 100)], nov(1), nov(5), status="CANCELLED")
        reserve([(chairs, 100)], nov(1), nov(5), status="RETURNED")

        assert check_availability(chairs, 100, nov(1), nov(5)).ok

    def test_out_status_consumes(self, chairs, reserve):
        reserve([(chairs, 100)], nov(1), nov(5), status="OUT")

        assert not check_availability(chairs, 1, nov(3), nov(3)).ok

    def test_excluded_reservation_is_ignored(self, chairs, reserve):
        r = reserve([(chairs, 90)], nov(1), nov(10))

        assert not check_availability(chairs, 100, nov(1), nov(10)).ok
        assert check_availability(chairs, 100, nov(1), nov(10), r.id).ok

    def test_repeated_checks_agree(self, chairs, reserve):
        reserve([(chairs, 40)], nov(4), nov(8))

        first = check_availability(chairs, 70, nov(6), nov(11))
        second = check_availability(chairs, 70, nov(6), nov(11))

        assert first == second

    def test_violation_to_dict_uses_calendar_dates(self, chairs, reserve):
        reserve([(chairs, 40)], nov(4), nov(8))

        body = check_availability(chairs, 70, nov(6), nov(11)).to_dict()

        assert body["available"] is False
        assert body["violation"]["day"] == "2025-11-06"
        assert body["violation"]["available"] == 60


class TestValidateReservation:
    def test_reports_over_capacity_line_among_several(self, make_item):
        tables = make_item("Tables", 4)
        plates = make_item("Plates", 1000)

        result = validate_reservation([(tables.id, 5), (plates.id, 500)], nov(1), nov(1))

        assert not result.ok
        assert result.violation.item_id == tables.id
        assert result.violation.requested == 5
        assert result.violation.available == 4

    def test_fails_fast_in_request_order(self, make_item):
        a = make_item("A", 1)
        b = make_item("B", 1)

        result = validate_reservation([(b.id, 2), (a.id, 2)], nov(1), nov(1))

        assert result.violation.item_id == b.id

    def test_missing_item_reported_before_violation(self, make_item):
        tables = make_item("Tables", 1)

        with pytest.raises(ItemNotFoundError) as exc:
            validate_reservation([(tables.id, 50), (4242, 1)], nov(1), nov(2))

        assert exc.value.item_id == 4242

    def test_items_are_independent(self, make_item, reserve):
        chairs = make_item("Chairs", 100)
        tents = make_item("Tents", 2)
        reserve([(chairs, 100)], nov(1), nov(5))

        assert validate_reservation([(tents.id, 2)], nov(1), nov(5)).ok

    def test_duplicate_lines_are_merged(self, make_item):
        tents = make_item("Tents", 4)

        assert validate_reservation([(tents.id, 2), (tents.id, 2)], nov(1), nov(1)).ok
        result = validate_reservation([(tents.id, 3), (tents.id, 2)], nov(1), nov(1))
        assert result.violation.requested == 5

    def test_self_exclusion_for_edits(self, make_item, reserve):
        chairs = make_item("Chairs", 100)
        r = reserve([(chairs, 90)], nov(1), nov(10))

        assert validate_reservation([(chairs.id, 90)], nov(1), nov(10), r.id).ok


class TestCalendarIndex:
    def test_lines_of_same_item_are_summed_per_reservation(self, make_item, customer, db_session):
        from rentkit.models import Reservation, ReservationLine

        chairs = make_item("Chairs", 100)
        r = Reservation(customer_id=customer.id, start_date=nov(2), end_date=nov(3), status="CONFIRMED")
        r.lines = [ReservationLine(item_id=chairs.id, quantity=5), ReservationLine(item_id=chairs.id, quantity=7)]
        db_session.add(r)
        db_session.commit()

        entries = active_reservations_touching(chairs.id, nov(1), nov(30))

        assert len(entries) == 1
        assert entries[0].quantity == 12

    def test_only_intersecting_ranges_returned_in_start_order(self, make_item, reserve):
        chairs = make_item("Chairs", 100)
        late = reserve([(chairs, 1)], nov(20), nov(22))
        early = reserve([(chairs, 1)], nov(5), nov(9))
        reserve([(chairs, 1)], nov(25), nov(28))

        entries = active_reservations_touching(chairs.id, nov(9), nov(20))

        assert [e.reservation_id for e in entries] == [early.id, late.id]


class TestSummaries:
    def test_day_summary_lists_every_item(self, make_item, reserve):
        chairs = make_item("Chairs", 100)
        tables = make_item("Tables", 10)
        reserve([(chairs, 40)], nov(4), nov(8))

        rows = {row["name"]: row for row in day_summary(nov(6))}

        assert rows["Chairs"]["reserved"] == 40
        assert rows["Chairs"]["remaining"] == 60
        assert rows["Tables"] == {
            "item_id": tables.id,
            "name": "Tables",
            "unit": "pcs",
            "total": 10,
            "reserved": 0,
            "remaining": 10,
        }

    def test_range_summary_reports_peak(self, make_item, reserve):
        chairs = make_item("Chairs", 100)
        reserve([(chairs, 40)], nov(4), nov(8))
        reserve([(chairs, 30)], nov(7), nov(9))

        (row,) = range_summary(nov(1), nov(10))

        assert row["peak_reserved"] == 70
        assert row["min_remaining"] == 30
        assert row["busiest_day"] == "2025-11-07"

    def test_range_summary_idle_item(self, make_item):
        make_item("Chairs", 100)

        (row,) = range_summary(nov(1), nov(10))

        assert row["peak_reserved"] == 0
        assert row["busiest_day"] is None

    def test_max_future_reserved_ignores_past_days(self, make_item, reserve):
        chairs = make_item("Chairs", 100)
        reserve([(chairs, 80)], nov(1), nov(3))
        reserve([(chairs, 20)], nov(2), nov(12))
        reserve([(chairs, 15)], nov(10), nov(11))

        assert max_future_reserved(chairs.id, nov(1)) == 100
        assert max_future_reserved(chairs.id, nov(4)) == 35
        assert max_future_reserved(chairs.id, nov(13)) == 0
