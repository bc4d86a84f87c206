"""Booking confirmation API endpoint."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from calsync import bookings as booking_store
from calsync.auth.session import User, get_current_user
from calsync.database import log_sync_action
from calsync.models import BookingMeetingResult
from calsync.sync.mutations import confirm_booking_meeting

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("/{booking_id}/calendar-event", response_model=BookingMeetingResult)
async def create_booking_calendar_event(booking_id: int, user: User = Depends(get_current_user)):
    """
    Put a booking on the host's calendar with a video link.

    A ``skipped`` result is a normal response: the booking stands without a
    calendar event.
    """
    booking = await booking_store.get_booking(booking_id, host_user_id=user.id)
    if not booking:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")

    if booking.calendar_event_id:
        return BookingMeetingResult(
            success=True,
            event_id=booking.calendar_event_id,
            meeting_link=booking.meeting_link,
        )

    result = await confirm_booking_meeting(booking)

    if result.skipped:
        outcome = "skipped"
    else:
        outcome = "success" if result.success else "failure"
    await log_sync_action(user.id, None, "booking_event", outcome, result.reason or result.error or result.event_id)

    return result
