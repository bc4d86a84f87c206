"""Ranked scheduling suggestions and conflict alternatives.

Consumed by the booking page and the assistant; like the resolver, these
functions never touch the network or the database.
"""

from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from calsync.availability.resolver import (
    SLOT_STEP_MINUTES,
    EventLike,
    busy_intervals_in_window,
    is_interval_busy,
)
from calsync.models import (
    AlternativeSlot,
    BusyInterval,
    MirroredEvent,
    SchedulingPreferences,
    SlotSuggestion,
)
from calsync.utils.timestamps import day_bounds, ensure_utc, get_zone, utcnow

ALTERNATIVE_OFFSETS_HOURS = (-2, -1, 1, 2, 3)
REASONABLE_HOURS = (8, 21)


def _score_slot(
    start: datetime,
    end: datetime,
    busy: list[BusyInterval],
    preferences: SchedulingPreferences,
    tz: Optional[str],
) -> tuple[int, str]:
    local = start.astimezone(get_zone(tz))
    hour = local.hour
    score = 100
    reasons = []

    if preferences.prefer_morning and 9 <= hour < 12:
        score += 20
        reasons.append("Morning slot")

    if preferences.prefer_afternoon and 13 <= hour < 17:
        score += 20
        reasons.append("Afternoon slot")

    if preferences.avoid_back_to_back:
        min_gap = timedelta(minutes=preferences.min_gap_minutes)
        too_close = any(
            timedelta(0) <= start - interval.end < min_gap
            or timedelta(0) <= interval.start - end < min_gap
            for interval in busy
        )
        if too_close:
            score -= 30
            reasons.append("Close to another event")
        elif busy:
            score += 15
            reasons.append("Good buffer time")

    if 10 <= hour <= 11 or 14 <= hour <= 15:
        score += 10
        reasons.append("Optimal focus time")

    if local.minute == 0:
        score += 5
        reasons.append("Clean start time")

    if hour < 9:
        score -= 20
        reasons.append("Early morning")
    if hour >= 17:
        score -= 15
        reasons.append("Late afternoon")

    return score, reasons[0] if reasons else "Available"


def suggest_time_slots(
    events: Iterable[EventLike],
    day: date,
    duration_minutes: int,
    preferences: Optional[SchedulingPreferences] = None,
    now: Optional[datetime] = None,
    tz: Optional[str] = None,
    limit: int = 5,
    step_minutes: int = SLOT_STEP_MINUTES,
) -> list[SlotSuggestion]:
    """Best-scoring conflict-free slots on ``day``, highest score first."""
    preferences = preferences or SchedulingPreferences()
    now = ensure_utc(now) if now else utcnow()
    window_start, window_end = day_bounds(
        day, preferences.preferred_start_hour, preferences.preferred_end_hour, tz
    )
    busy = busy_intervals_in_window(events, window_start, window_end)
    duration = timedelta(minutes=duration_minutes)

    suggestions = []
    cursor = window_start
    while cursor + duration <= window_end:
        slot_end = cursor + duration
        if cursor >= now and not is_interval_busy(busy, cursor, slot_end):
            score, reason = _score_slot(cursor, slot_end, busy, preferences, tz)
            suggestions.append(SlotSuggestion(start=cursor, end=slot_end, score=score, reason=reason))
        cursor += timedelta(minutes=step_minutes)

    # Stable sort keeps earlier slots first among equal scores
    suggestions.sort(key=lambda suggestion: -suggestion.score)
    return suggestions[:limit]


def find_conflicts(events: Iterable[MirroredEvent], start: datetime, end: datetime) -> list[MirroredEvent]:
    """Busy mirrored events overlapping ``[start, end)``."""
    start, end = ensure_utc(start), ensure_utc(end)
    return [
        event
        for event in events
        if event.is_busy and ensure_utc(event.start_time) < end and ensure_utc(event.end_time) > start
    ]


def find_alternative_slots(
    events: Iterable[EventLike],
    requested_start: datetime,
    duration_minutes: int,
    now: Optional[datetime] = None,
    tz: Optional[str] = None,
    limit: int = 4,
) -> list[AlternativeSlot]:
    """
    Nearby free start times for a conflicting request.

    Tries the requested time shifted by -2, -1, +1, +2 and +3 hours, keeping
    only future starts between 08:00 and 21:00 local time.
    """
    events = list(events)
    now = ensure_utc(now) if now else utcnow()
    requested_start = ensure_utc(requested_start)
    zone = get_zone(tz)
    duration = timedelta(minutes=duration_minutes)

    alternatives = []
    for offset in ALTERNATIVE_OFFSETS_HOURS:
        candidate = requested_start + timedelta(hours=offset)
        candidate_end = candidate + duration

        if candidate < now:
            continue

        local = candidate.astimezone(zone)
        if not REASONABLE_HOURS[0] <= local.hour < REASONABLE_HOURS[1]:
            continue

        if is_interval_busy(events, candidate, candidate_end):
            continue

        label = local.strftime("%I:%M %p").lstrip("0")
        if local.date() != requested_start.astimezone(zone).date():
            label += f" ({local.strftime('%a')})"

        alternatives.append(AlternativeSlot(start=candidate, end=candidate_end, label=label))
        if len(alternatives) >= limit:
            break

    return alternatives
