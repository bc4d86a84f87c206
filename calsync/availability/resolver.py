"""Busy/free computation over already-fetched mirrored events.

Everything here is pure: callers load events from the mirror and pass them
in. Events may be :class:`MirroredEvent` rows (non-busy rows are ignored) or
plain :class:`BusyInterval` values.
"""

from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Union

from calsync.models import BusyInterval, MirroredEvent, TimeSlot
from calsync.utils.timestamps import day_bounds, ensure_utc

SLOT_STEP_MINUTES = 30

EventLike = Union[MirroredEvent, BusyInterval]


def _busy_interval(event: EventLike) -> Optional[BusyInterval]:
    if isinstance(event, BusyInterval):
        return BusyInterval(start=ensure_utc(event.start), end=ensure_utc(event.end))
    if not event.is_busy:
        return None
    return BusyInterval(start=ensure_utc(event.start_time), end=ensure_utc(event.end_time))


def is_interval_busy(events: Iterable[EventLike], start: datetime, end: datetime) -> bool:
    """True iff a busy event overlaps ``[start, end)``. Touching edges don't count."""
    start, end = ensure_utc(start), ensure_utc(end)
    for event in events:
        interval = _busy_interval(event)
        if interval and interval.start < end and interval.end > start:
            return True
    return False


def busy_intervals_in_window(
    events: Iterable[EventLike],
    window_start: datetime,
    window_end: datetime,
) -> list[BusyInterval]:
    """Busy intervals overlapping the window, clipped to it and sorted by start."""
    intervals = []
    for event in events:
        interval = _busy_interval(event)
        if not interval or interval.end <= window_start or interval.start >= window_end:
            continue
        intervals.append(
            BusyInterval(
                start=max(interval.start, window_start),
                end=min(interval.end, window_end),
            )
        )
    intervals.sort(key=lambda interval: (interval.start, interval.end))
    return intervals


def busy_intervals_for_day(
    events: Iterable[EventLike],
    day: date,
    day_start_hour: int = 9,
    day_end_hour: int = 17,
    tz: Optional[str] = None,
) -> list[BusyInterval]:
    window_start, window_end = day_bounds(day, day_start_hour, day_end_hour, tz)
    return busy_intervals_in_window(events, window_start, window_end)


def find_gaps(
    events_for_day: Iterable[EventLike],
    day: date,
    day_start_hour: int = 9,
    day_end_hour: int = 17,
    min_gap_minutes: int = 30,
    tz: Optional[str] = None,
) -> list[TimeSlot]:
    """
    Free gaps of at least ``min_gap_minutes`` inside the working window.

    A cursor walks the sorted busy intervals from the window start; the
    cursor only ever moves forward, so overlapping or unsorted input cannot
    yield negative or duplicate gaps.
    """
    window_start, window_end = day_bounds(day, day_start_hour, day_end_hour, tz)
    min_gap = timedelta(minutes=min_gap_minutes)

    gaps = []
    cursor = window_start
    for interval in busy_intervals_in_window(events_for_day, window_start, window_end):
        gap = interval.start - cursor
        if gap > timedelta(0) and gap >= min_gap:
            gaps.append(TimeSlot(start=cursor, end=interval.start))
        cursor = max(cursor, interval.end)

    tail = window_end - cursor
    if tail > timedelta(0) and tail >= min_gap:
        gaps.append(TimeSlot(start=cursor, end=window_end))

    return gaps


def find_free_slots(
    events_for_day: Iterable[EventLike],
    day: date,
    duration_minutes: int,
    day_start_hour: int = 9,
    day_end_hour: int = 17,
    tz: Optional[str] = None,
    step_minutes: int = SLOT_STEP_MINUTES,
) -> list[TimeSlot]:
    """
    Candidate slots of exactly ``duration_minutes``.

    Start times advance by ``step_minutes`` (30 by default), not by the slot
    length, so slots in the same free region overlap: each one is an
    alternative start time, not a packing.
    """
    if duration_minutes <= 0 or step_minutes <= 0:
        raise ValueError("duration_minutes and step_minutes must be positive")

    window_start, window_end = day_bounds(day, day_start_hour, day_end_hour, tz)
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=step_minutes)

    slots = []
    cursor = window_start
    for interval in busy_intervals_in_window(events_for_day, window_start, window_end):
        while cursor + duration <= interval.start:
            slots.append(TimeSlot(start=cursor, end=cursor + duration))
            cursor += step
        cursor = max(cursor, interval.end)

    while cursor + duration <= window_end:
        slots.append(TimeSlot(start=cursor, end=cursor + duration))
        cursor += step

    return slots
