"""Persistence for bookings (only what calendar confirmation needs)."""

import logging
from typing import Optional

from calsync.database import get_database
from calsync.models import Booking
from calsync.utils.timestamps import parse_timestamp, to_db_timestamp, utcnow

logger = logging.getLogger(__name__)


async def get_booking(booking_id: int, host_user_id: Optional[int] = None) -> Optional[Booking]:
    db = await get_database()
    query = "SELECT * FROM bookings WHERE id = ?"
    params: list = [booking_id]
    if host_user_id is not None:
        query += " AND host_user_id = ?"
        params.append(host_user_id)

    cursor = await db.execute(query, params)
    row = await cursor.fetchone()
    if not row:
        return None

    return Booking(
        id=row["id"],
        host_user_id=row["host_user_id"],
        guest_name=row["guest_name"],
        guest_email=row["guest_email"],
        start_time=parse_timestamp(row["start_time"]),
        duration_minutes=row["duration_minutes"],
        title=row["title"],
        location=row["location"],
        notes=row["notes"],
        status=row["status"],
        meeting_link=row["meeting_link"],
        calendar_event_id=row["calendar_event_id"],
    )


async def mark_booking_confirmed(
    booking_id: int,
    calendar_event_id: str,
    meeting_link: Optional[str] = None,
) -> None:
    """Flip a booking to ``confirmed`` and remember its calendar event."""
    db = await get_database()
    await db.execute(
        """UPDATE bookings SET
           status = 'confirmed', calendar_event_id = ?,
           meeting_link = COALESCE(?, meeting_link), updated_at = ?
           WHERE id = ?""",
        (calendar_event_id, meeting_link, to_db_timestamp(utcnow()), booking_id),
    )
    await db.commit()
    logger.info(f"Booking {booking_id} confirmed with calendar event {calendar_event_id}")
