"""Availability API: gaps, free slots, suggestions, busy time and conflicts.

All answers are computed from the local mirror; call the sync endpoint first
if fresh provider data is needed.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from calsync import connections as connection_store
from calsync.auth.session import User, get_current_user
from calsync.availability import (
    busy_intervals_in_window,
    find_alternative_slots,
    find_conflicts,
    find_free_slots,
    find_gaps,
    suggest_time_slots,
)
from calsync.config import get_settings
from calsync.models import (
    AlternativeSlot,
    BusyInterval,
    MirroredEvent,
    SchedulingPreferences,
    SlotSuggestion,
    TimeSlot,
)
from calsync.sync import mirror
from calsync.utils.timestamps import day_bounds, ensure_utc

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/availability", tags=["availability"])


class ConflictResponse(BaseModel):
    has_conflict: bool
    conflicts: list[MirroredEvent]
    alternatives: list[AlternativeSlot]


async def _user_timezone(user_id: int, tz: Optional[str]) -> str:
    if tz:
        return tz
    connection = await connection_store.get_connection_for_user(user_id)
    return connection.settings.timezone if connection else "UTC"


async def _busy_events_for_day(user_id: int, day: date, tz: str) -> list[MirroredEvent]:
    start, end = day_bounds(day, 0, 24, tz)
    return await mirror.list_events(user_id=user_id, start=start, end=end, busy_only=True)


def _check_hours(day_start_hour: int, day_end_hour: int) -> None:
    if not 0 <= day_start_hour < day_end_hour <= 24:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="day_start_hour must be before day_end_hour, both within 0-24",
        )


@router.get("/gaps", response_model=list[TimeSlot])
async def get_gaps(
    day: date = Query(..., alias="date"),
    min_gap_minutes: int = Query(30, ge=1),
    day_start_hour: Optional[int] = None,
    day_end_hour: Optional[int] = None,
    tz: Optional[str] = None,
    user: User = Depends(get_current_user),
):
    """Free gaps in the working day."""
    settings = get_settings()
    start_hour = settings.default_day_start_hour if day_start_hour is None else day_start_hour
    end_hour = settings.default_day_end_hour if day_end_hour is None else day_end_hour
    _check_hours(start_hour, end_hour)

    tz = await _user_timezone(user.id, tz)
    events = await _busy_events_for_day(user.id, day, tz)
    return find_gaps(events, day, start_hour, end_hour, min_gap_minutes, tz)


@router.get("/free-slots", response_model=list[TimeSlot])
async def get_free_slots(
    day: date = Query(..., alias="date"),
    duration_minutes: int = Query(30, ge=5, le=480),
    day_start_hour: Optional[int] = None,
    day_end_hour: Optional[int] = None,
    tz: Optional[str] = None,
    user: User = Depends(get_current_user),
):
    """Candidate start times for a meeting of ``duration_minutes``."""
    settings = get_settings()
    start_hour = settings.default_day_start_hour if day_start_hour is None else day_start_hour
    end_hour = settings.default_day_end_hour if day_end_hour is None else day_end_hour
    _check_hours(start_hour, end_hour)

    tz = await _user_timezone(user.id, tz)
    events = await _busy_events_for_day(user.id, day, tz)
    return find_free_slots(
        events, day, duration_minutes, start_hour, end_hour, tz,
        step_minutes=settings.slot_step_minutes,
    )


@router.get("/suggestions", response_model=list[SlotSuggestion])
async def get_suggestions(
    day: date = Query(..., alias="date"),
    duration_minutes: int = Query(30, ge=5, le=480),
    prefer_morning: bool = False,
    prefer_afternoon: bool = False,
    avoid_back_to_back: bool = True,
    limit: int = Query(5, ge=1, le=20),
    tz: Optional[str] = None,
    user: User = Depends(get_current_user),
):
    """Ranked suggestions for a new meeting on ``date``."""
    settings = get_settings()
    preferences = SchedulingPreferences(
        preferred_start_hour=settings.default_day_start_hour,
        preferred_end_hour=settings.default_day_end_hour,
        prefer_morning=prefer_morning,
        prefer_afternoon=prefer_afternoon,
        avoid_back_to_back=avoid_back_to_back,
    )

    tz = await _user_timezone(user.id, tz)
    events = await _busy_events_for_day(user.id, day, tz)
    return suggest_time_slots(
        events, day, duration_minutes, preferences, tz=tz, limit=limit,
        step_minutes=settings.slot_step_minutes,
    )


@router.get("/busy", response_model=list[BusyInterval])
async def get_busy(
    start: datetime,
    end: datetime,
    user: User = Depends(get_current_user),
):
    """Busy intervals between ``start`` and ``end``, clipped to that window."""
    start, end = ensure_utc(start), ensure_utc(end)
    if end <= start:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end must be after start")

    events = await mirror.list_events(user_id=user.id, start=start, end=end, busy_only=True)
    return busy_intervals_in_window(events, start, end)


@router.get("/conflicts", response_model=ConflictResponse)
async def get_conflicts(
    start: datetime,
    duration_minutes: int = Query(30, ge=5, le=480),
    tz: Optional[str] = None,
    user: User = Depends(get_current_user),
):
    """Events clashing with a proposed meeting, plus nearby alternatives."""
    start = ensure_utc(start)
    end = start + timedelta(minutes=duration_minutes)

    # Alternatives may move up to three hours either way
    events = await mirror.list_events(
        user_id=user.id,
        start=start - timedelta(hours=3),
        end=end + timedelta(hours=3),
        busy_only=True,
    )

    conflicts = find_conflicts(events, start, end)
    alternatives = []
    if conflicts:
        tz = await _user_timezone(user.id, tz)
        alternatives = find_alternative_slots(events, start, duration_minutes, tz=tz)

    return ConflictResponse(
        has_conflict=bool(conflicts),
        conflicts=conflicts,
        alternatives=alternatives,
    )
