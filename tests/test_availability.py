"""Tests for gap, free-slot, suggestion and conflict computation."""

from datetime import date, datetime, timedelta, timezone

import pytest

from calsync.availability import (
    find_alternative_slots,
    find_conflicts,
    find_free_slots,
    find_gaps,
    is_interval_busy,
    suggest_time_slots,
)
from calsync.availability.resolver import busy_intervals_for_day
from calsync.models import BusyInterval, MirroredEvent, SchedulingPreferences

DAY = date(2026, 3, 2)


def at(hour: int, minute: int = 0, day: date = DAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def busy(start: tuple, end: tuple) -> BusyInterval:
    return BusyInterval(start=at(*start), end=at(*end))


def mirrored(event_id: str, start: datetime, end: datetime, is_busy: bool = True) -> MirroredEvent:
    return MirroredEvent(
        connection_id=1,
        user_id=1,
        calendar_id="primary",
        external_event_id=event_id,
        start_time=start,
        end_time=end,
        is_busy=is_busy,
    )


def spans(slots) -> list[tuple]:
    return [(slot.start, slot.end) for slot in slots]


def test_gaps_between_two_meetings():
    events = [busy((9,), (10,)), busy((11,), (12,))]

    gaps = find_gaps(events, DAY, day_start_hour=9, day_end_hour=18, min_gap_minutes=30)

    assert spans(gaps) == [(at(10), at(11)), (at(12), at(18))]


def test_day_without_busy_events_is_one_gap():
    gaps = find_gaps([], DAY, day_start_hour=9, day_end_hour=17)

    assert spans(gaps) == [(at(9), at(17))]
    assert gaps[0].duration_minutes == 480


def test_fully_booked_day_has_no_gaps_or_slots():
    events = [busy((8,), (12,)), busy((12,), (18,))]

    assert find_gaps(events, DAY, 9, 17) == []
    assert find_free_slots(events, DAY, 30, 9, 17) == []


def test_short_gaps_are_dropped_and_overlaps_do_not_go_negative():
    events = [
        busy((9,), (11,)),
        busy((10,), (10, 30)),
        busy((11, 15), (12,)),
        busy((9, 30), (10, 45)),
    ]

    gaps = find_gaps(events, DAY, 9, 13, min_gap_minutes=30)

    assert spans(gaps) == [(at(12), at(13))]


def test_events_are_clipped_to_the_working_window():
    events = [busy((7,), (9, 30)), busy((16, 30), (20,))]

    assert spans(find_gaps(events, DAY, 9, 17)) == [(at(9, 30), at(16, 30))]
    assert spans(busy_intervals_for_day(events, DAY, 9, 17)) == [
        (at(9), at(9, 30)),
        (at(16, 30), at(17)),
    ]


def test_non_busy_mirrored_events_are_ignored():
    events = [mirrored("free", at(10), at(12), is_busy=False)]

    assert spans(find_gaps(events, DAY, 9, 17)) == [(at(9), at(17))]
    assert not is_interval_busy(events, at(10), at(11))


def test_working_window_follows_timezone():
    gaps = find_gaps([], DAY, 9, 17, tz="Europe/Berlin")

    assert spans(gaps) == [(at(8), at(16))]


def test_free_slots_step_by_thirty_minutes():
    events = [busy((10,), (11,))]

    slots = find_free_slots(events, DAY, duration_minutes=60, day_start_hour=9, day_end_hour=13)

    assert spans(slots) == [
        (at(9), at(10)),
        (at(11), at(12)),
        (at(11, 30), at(12, 30)),
        (at(12), at(13)),
    ]


def test_free_slots_reject_non_positive_duration():
    with pytest.raises(ValueError):
        find_free_slots([], DAY, duration_minutes=0)


def test_touching_intervals_do_not_conflict():
    events = [busy((10,), (11,))]

    assert not is_interval_busy(events, at(11), at(12))
    assert not is_interval_busy(events, at(9), at(10))
    assert is_interval_busy(events, at(10, 59), at(11, 30))


def test_suggestions_rank_focus_hours_and_round_starts_first():
    suggestions = suggest_time_slots([], DAY, 30, now=at(0))

    assert [s.start for s in suggestions] == [at(10), at(11), at(14), at(15), at(10, 30)]
    assert suggestions[0].score == 115
    assert suggestions[0].reason == "Optimal focus time"


def test_suggestions_skip_past_and_busy_slots():
    events = [busy((10,), (12,))]

    suggestions = suggest_time_slots(events, DAY, 60, now=at(13), limit=20)

    assert suggestions
    assert all(s.start >= at(13) for s in suggestions)
    assert all(not is_interval_busy(events, s.start, s.end) for s in suggestions)


def test_suggestions_penalise_back_to_back_slots():
    events = [busy((10,), (11,))]
    preferences = SchedulingPreferences(prefer_morning=True)

    suggestions = suggest_time_slots(events, DAY, 30, preferences=preferences, now=at(0), limit=20)
    by_start = {s.start: s for s in suggestions}

    assert by_start[at(11)].score < by_start[at(11, 30)].score
    assert by_start[at(9)].reason == "Morning slot"


def test_find_conflicts_returns_only_overlapping_busy_events():
    events = [
        mirrored("overlap", at(10), at(11)),
        mirrored("free", at(10), at(11), is_busy=False),
        mirrored("after", at(11), at(12)),
    ]

    conflicts = find_conflicts(events, at(10, 30), at(11))

    assert [event.external_event_id for event in conflicts] == ["overlap"]


def test_alternative_slots_around_a_conflict():
    events = [busy((10,), (11,))]

    alternatives = find_alternative_slots(events, at(10), 60, now=at(0, day=DAY - timedelta(days=1)))

    assert [a.start for a in alternatives] == [at(8), at(9), at(11), at(12)]
    assert [a.label for a in alternatives] == ["8:00 AM", "9:00 AM", "11:00 AM", "12:00 PM"]


def test_alternative_slots_stay_in_reasonable_hours_and_label_other_days():
    alternatives = find_alternative_slots([], at(22), 30, now=at(0))

    # Only 20:00 falls before 21:00; the later offsets land overnight
    assert [a.start for a in alternatives] == [at(20)]

    late = find_alternative_slots([], at(23, 30), 30, now=at(0), tz="America/New_York")
    assert all("(" not in a.label for a in late)


def test_suggestions_follow_the_configured_step():
    suggestions = suggest_time_slots([], DAY, 30, now=at(0), limit=20, step_minutes=60)

    assert suggestions
    assert all(s.start.minute == 0 for s in suggestions)


def test_window_ending_at_midnight_reaches_the_next_day():
    gaps = find_gaps([busy((9,), (10,))], DAY, day_start_hour=0, day_end_hour=24)

    assert spans(gaps) == [(at(0), at(9)), (at(10), datetime(2026, 3, 3, tzinfo=timezone.utc))]
