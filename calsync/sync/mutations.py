"""Provider-side event mutations with write-through to the local mirror.

The provider is the source of truth: once a provider call succeeds the
operation has succeeded, even if the following mirror write fails. Such a
mirror miss is logged and reconciled by the next sync of the window.
"""

import logging
from datetime import datetime
from typing import Awaitable, Optional

from calsync import bookings as booking_store
from calsync import connections as connection_store
from calsync.auth.credentials import get_valid_access_token
from calsync.config import get_settings
from calsync.errors import AuthError, ProviderError
from calsync.models import (
    Booking,
    BookingMeetingResult,
    Connection,
    MirroredEvent,
    ProviderEvent,
)
from calsync.sync import mirror
from calsync.sync.google_calendar import (
    DEFAULT_CALENDAR_ID,
    GoogleCalendarClient,
    build_booking_payload,
    build_event_patch,
    build_event_payload,
    build_focus_block_payload,
)

logger = logging.getLogger(__name__)


async def _write_mirror(write: Awaitable, description: str) -> bool:
    """Run a mirror write; failures are logged, never raised."""
    try:
        await write
        return True
    except Exception as e:
        logger.warning(f"Mirror write failed after {description}: {e}. Next sync will reconcile.")
        return False


async def _client_for(connection: Connection) -> GoogleCalendarClient:
    access_token = await get_valid_access_token(connection)
    return GoogleCalendarClient(access_token)


async def create_event(
    connection: Connection,
    summary: str,
    start: datetime,
    end: datetime,
    calendar_id: str = DEFAULT_CALENDAR_ID,
    description: Optional[str] = None,
    location: Optional[str] = None,
    attendees: Optional[list[str]] = None,
    reminders: Optional[list[dict]] = None,
    time_zone: Optional[str] = None,
) -> ProviderEvent:
    """Create a manual event and mirror it as busy."""
    client = await _client_for(connection)
    payload = build_event_payload(
        summary=summary,
        start=start,
        end=end,
        time_zone=time_zone or connection.settings.timezone,
        description=description,
        location=location,
        attendees=attendees,
        reminders=reminders,
    )

    created = client.create_event(calendar_id, payload)
    logger.info(f"Event created on connection {connection.id}: {created.id}")

    await _write_mirror(
        mirror.upsert_event(
            MirroredEvent.from_provider_event(created, connection, calendar_id, is_busy=True)
        ),
        f"creating event {created.id}",
    )
    return created


async def create_focus_block(
    connection: Connection,
    start: datetime,
    end: datetime,
    title: str = "Focus Time",
    calendar_id: str = DEFAULT_CALENDAR_ID,
    description: str = "Blocked for focused work",
) -> ProviderEvent:
    """Create a private, opaque focus block and mirror it as busy."""
    client = await _client_for(connection)
    payload = build_focus_block_payload(
        title=title,
        start=start,
        end=end,
        time_zone=connection.settings.timezone,
        description=description,
    )

    created = client.create_event(calendar_id, payload)
    logger.info(f"Focus block created on connection {connection.id}: {created.id}")

    await _write_mirror(
        mirror.upsert_event(
            MirroredEvent.from_provider_event(created, connection, calendar_id, is_busy=True)
        ),
        f"creating focus block {created.id}",
    )
    return created


async def update_event(
    connection: Connection,
    event_id: str,
    calendar_id: str = DEFAULT_CALENDAR_ID,
    summary: Optional[str] = None,
    description: Optional[str] = None,
    location: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    time_zone: Optional[str] = None,
) -> ProviderEvent:
    """Patch the supplied fields of an event and refresh its mirror row."""
    client = await _client_for(connection)
    patch = build_event_patch(
        time_zone=time_zone or connection.settings.timezone,
        summary=summary,
        description=description,
        location=location,
        start=start,
        end=end,
    )

    updated = client.update_event(calendar_id, event_id, patch)

    existing = await mirror.get_event(connection.id, event_id)
    is_busy = existing.is_busy if existing else None
    await _write_mirror(
        mirror.upsert_event(
            MirroredEvent.from_provider_event(updated, connection, calendar_id, is_busy=is_busy)
        ),
        f"updating event {event_id}",
    )
    return updated


async def delete_event(
    connection: Connection,
    event_id: str,
    calendar_id: str = DEFAULT_CALENDAR_ID,
) -> bool:
    """
    Delete an event on the provider and from the mirror.

    An event the provider already reports as gone counts as deleted; the
    return value tells whether this call removed it.
    """
    client = await _client_for(connection)
    removed = client.delete_event(calendar_id, event_id)

    await _write_mirror(
        mirror.delete_event(connection.id, event_id),
        f"deleting event {event_id}",
    )
    return removed


async def confirm_booking_meeting(booking: Booking) -> BookingMeetingResult:
    """
    Put a confirmed booking on the host's calendar with a Meet link.

    A calendar event is an enhancement for a booking, not a prerequisite: if
    Google isn't configured, the host has no connection or the host's
    credentials are unusable, the result is ``skipped`` and the booking is
    left as it was.
    """
    settings = get_settings()
    if not settings.google_client_id or not settings.google_client_secret:
        logger.info("Google Calendar not configured, skipping booking calendar event")
        return BookingMeetingResult(success=False, skipped=True, reason="Google Calendar not configured")

    connection = await connection_store.get_connection_for_user(booking.host_user_id)
    if not connection:
        logger.info(f"No calendar connection for host {booking.host_user_id}, skipping booking {booking.id}")
        return BookingMeetingResult(success=False, skipped=True, reason="Host has no calendar connected")

    try:
        client = await _client_for(connection)
    except AuthError as e:
        logger.warning(f"Host credentials unusable for booking {booking.id}: {e.message}")
        return BookingMeetingResult(success=False, skipped=True, reason="Host calendar credentials unavailable")

    payload = build_booking_payload(
        booking_id=booking.id,
        title=booking.title,
        guest_name=booking.guest_name,
        guest_email=booking.guest_email,
        start=booking.start_time,
        end=booking.end_time,
        time_zone=connection.settings.timezone,
        location=booking.location,
        notes=booking.notes,
    )

    try:
        created = client.create_event(DEFAULT_CALENDAR_ID, payload, conference=True, send_updates="all")
    except ProviderError as e:
        logger.error(f"Calendar event for booking {booking.id} failed: {e}")
        return BookingMeetingResult(success=False, error=str(e))

    meeting_link = created.meeting_link
    logger.info(f"Booking {booking.id} event created: {created.id} (meeting link: {bool(meeting_link)})")

    await _write_mirror(
        mirror.upsert_event(
            MirroredEvent.from_provider_event(created, connection, DEFAULT_CALENDAR_ID, is_busy=True)
        ),
        f"creating booking event {created.id}",
    )
    try:
        await booking_store.mark_booking_confirmed(booking.id, created.id, meeting_link)
    except Exception as e:
        # The provider event exists either way
        logger.error(f"Booking {booking.id} event {created.id} created but not recorded: {e}")

    return BookingMeetingResult(
        success=True,
        event_id=created.id,
        event_link=created.html_link,
        meeting_link=meeting_link,
    )
