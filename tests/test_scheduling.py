import random
from datetime import date, datetime, time, timedelta

import pytest

from errors import InvalidInterval
from models import Booking
from scheduling import (
    BusinessHours, check_conflict, compute_available_slots, iter_available_slots, overlaps,
)

DAY = date(2024, 6, 1)
HOURS = BusinessHours(time(9, 0), time(18, 0))


def at(hour, minute=0, day=DAY):
    return datetime.combine(day, time(hour, minute))


def booking(id, start, end, staff_id=1, status='scheduled'):
    return Booking(id=id, staff_id=staff_id, start_time=start, end_time=end, status=status)


def test_adjacent_intervals_do_not_overlap():
    assert not overlaps(at(10), at(11), at(11), at(12))
    assert not overlaps(at(11), at(12), at(10), at(11))


def test_nested_and_partial_intervals_overlap():
    assert overlaps(at(10), at(12), at(10, 30), at(11))
    assert overlaps(at(10), at(11), at(10, 30), at(11, 30))
    assert overlaps(at(10), at(11), at(10), at(11))


def test_zero_length_interval_never_overlaps():
    assert not overlaps(at(10, 30), at(10, 30), at(10), at(11))
    assert not overlaps(at(10), at(11), at(10, 30), at(10, 30))


def test_overlap_is_symmetric():
    rnd = random.Random(7)
    for _ in range(500):
        a, b, c, d = (at(9) + timedelta(minutes=15 * rnd.randint(0, 20)) for _ in range(4))
        assert overlaps(a, b, c, d) == overlaps(c, d, a, b)


def test_check_conflict_rejects_invalid_interval():
    with pytest.raises(InvalidInterval):
        check_conflict(1, at(11), at(10), [])
    with pytest.raises(InvalidInterval):
        check_conflict(1, at(11), at(11), [])


def test_check_conflict_reports_all_conflicts_in_order():
    bookings = [
        booking(3, at(12), at(13)),
        booking(1, at(10), at(11)),
        booking(2, at(14), at(15)),
    ]
    result = check_conflict(1, at(10, 30), at(12, 30), bookings)
    assert not result.accepted
    assert result.conflicting_ids == (1, 3)


def test_check_conflict_ignores_other_staff_and_inert_statuses():
    bookings = [
        booking(1, at(10), at(11), staff_id=2),
        booking(2, at(10), at(11), status='cancelled'),
        booking(3, at(10), at(11), status='completed'),
    ]
    assert check_conflict(1, at(10), at(11), bookings).accepted


def test_check_conflict_counts_in_progress_as_busy():
    bookings = [booking(1, at(10), at(11), status='in_progress')]
    assert check_conflict(1, at(10, 30), at(11, 30), bookings).conflicting_ids == (1,)


def test_check_conflict_excludes_booking_being_moved():
    bookings = [booking(1, at(10), at(11))]
    assert check_conflict(1, at(10, 30), at(11, 30), bookings, exclude_booking_id=1).accepted


def test_slot_boundaries_without_bookings():
    slots = compute_available_slots(1, DAY, 60, [], HOURS, 30)
    assert (slots[0].start_time, slots[0].end_time) == (at(9), at(10))
    assert (slots[-1].start_time, slots[-1].end_time) == (at(17), at(18))
    assert all(s.start_time <= at(17) for s in slots)
    assert len(slots) == 17


def test_slots_skip_existing_booking():
    bookings = [booking(1, at(10), at(11))]
    slots = compute_available_slots(1, DAY, 30, bookings, HOURS, 30)
    starts = [s.label for s in slots]
    assert starts[:2] == ["09:00", "09:30"]
    assert starts[2] == "11:00"
    assert starts[-1] == "17:30"
    assert "10:00" not in starts and "10:30" not in starts
    assert len(slots) == 16


def test_slots_for_longer_service_avoid_overlap_before_booking():
    bookings = [booking(1, at(10), at(11))]
    starts = [s.label for s in compute_available_slots(1, DAY, 60, bookings, HOURS, 30)]
    assert "09:00" in starts
    assert "09:30" not in starts
    assert "11:00" in starts


def test_slots_ignore_bookings_of_other_staff():
    bookings = [booking(1, at(10), at(11), staff_id=2)]
    assert len(compute_available_slots(1, DAY, 60, bookings, HOURS, 30)) == 17


def test_invalid_duration_returns_no_slots():
    assert compute_available_slots(1, DAY, 0, [], HOURS, 30) == []
    assert compute_available_slots(1, DAY, -30, [], HOURS, 30) == []
    assert compute_available_slots(1, DAY, 9 * 60 + 1, [], HOURS, 30) == []


def test_full_day_service_fits_exactly_once():
    slots = compute_available_slots(1, DAY, 9 * 60, [], HOURS, 30)
    assert [(s.start_time, s.end_time) for s in slots] == [(at(9), at(18))]


def test_not_before_drops_past_slots():
    slots = compute_available_slots(1, DAY, 30, [], HOURS, 30, not_before=at(15, 10))
    assert slots[0].start_time == at(15, 30)


def test_nonpositive_granularity_is_a_configuration_error():
    with pytest.raises(ValueError):
        compute_available_slots(1, DAY, 30, [], HOURS, 0)


def test_slot_iterator_restarts_on_each_call():
    first = list(iter_available_slots(1, DAY, 60, [], HOURS, 30))
    second = list(iter_available_slots(1, DAY, 60, [], HOURS, 30))
    assert first == second


def test_business_hours_must_close_after_open():
    with pytest.raises(ValueError):
        BusinessHours(time(18, 0), time(9, 0))
    assert BusinessHours.from_strings("10:00", "19:00").length_minutes == 540


def test_offered_slots_are_always_accepted_by_conflict_check():
    rnd = random.Random(2024)
    for _ in range(200):
        bookings = []
        for i in range(rnd.randint(0, 5)):
            start = at(9) + timedelta(minutes=15 * rnd.randint(0, 34))
            end = start + timedelta(minutes=15 * rnd.randint(1, 8))
            bookings.append(booking(i + 1, start, end, staff_id=rnd.choice([1, 2]),
                                    status=rnd.choice(['scheduled', 'in_progress', 'cancelled'])))
        duration = rnd.choice([15, 30, 45, 60, 90, 120])
        granularity = rnd.choice([15, 30, 60])
        for slot in compute_available_slots(1, DAY, duration, bookings, HOURS, granularity):
            assert slot.end_time - slot.start_time == timedelta(minutes=duration)
            assert slot.end_time <= at(18)
            assert check_conflict(1, slot.start_time, slot.end_time, bookings).accepted
