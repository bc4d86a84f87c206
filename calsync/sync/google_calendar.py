"""Google Calendar API wrapper."""

import logging
from datetime import datetime
from typing import Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from calsync.config import get_settings
from calsync.errors import ProviderError
from calsync.models import CalendarRef, ProviderEvent
from calsync.utils.timestamps import to_rfc3339

logger = logging.getLogger(__name__)

# Google alias for the account owner's calendar
DEFAULT_CALENDAR_ID = "primary"


def _provider_error(error: HttpError, operation: str) -> ProviderError:
    """Carry the provider's HTTP status and body through verbatim."""
    body = getattr(error, "content", b"") or b""
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    return ProviderError(error.resp.status, body, operation)


class GoogleCalendarClient:
    """
    Thin wrapper around Google Calendar API v3.

    An instance is bound to one access token and holds no other state.
    Responses are parsed into :mod:`calsync.models` schemas before they are
    returned; every ``HttpError`` becomes a :class:`ProviderError`.
    """

    def __init__(self, access_token: str):
        """Initialize with access token."""
        self.credentials = Credentials(token=access_token)
        self.service = build("calendar", "v3", credentials=self.credentials, cache_discovery=False)

    def list_events(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        max_results: int = 250,
    ) -> list[ProviderEvent]:
        """
        List events in ``[time_min, time_max)``.

        Recurring events are always expanded into individual occurrences
        (``singleEvents=true``); availability code has no recurrence logic.
        """
        request_params = {
            "calendarId": calendar_id,
            "timeMin": to_rfc3339(time_min),
            "timeMax": to_rfc3339(time_max),
            "singleEvents": True,
            "orderBy": "startTime",
            "maxResults": max_results,
        }

        items = []
        page_token = None
        try:
            while True:
                if page_token:
                    request_params["pageToken"] = page_token

                result = self.service.events().list(**request_params).execute()
                items.extend(result.get("items", []))

                page_token = result.get("nextPageToken")
                if not page_token:
                    break
        except HttpError as e:
            raise _provider_error(e, f"List events for {calendar_id}") from e

        return [ProviderEvent.from_api(item) for item in items]

    def list_calendars(self) -> list[CalendarRef]:
        """List all calendars the account has access to."""
        try:
            result = self.service.calendarList().list().execute()
        except HttpError as e:
            raise _provider_error(e, "List calendars") from e
        return [CalendarRef.model_validate(item) for item in result.get("items", [])]

    def get_timezone(self) -> str:
        """The account's calendar timezone setting."""
        try:
            result = self.service.settings().get(setting="timezone").execute()
        except HttpError as e:
            raise _provider_error(e, "Get timezone") from e
        return result.get("value") or "UTC"

    def create_event(
        self,
        calendar_id: str,
        payload: dict,
        conference: bool = False,
        send_updates: Optional[str] = None,
    ) -> ProviderEvent:
        """
        Create an event.

        ``conference=True`` sets ``conferenceDataVersion=1`` so a
        ``conferenceData.createRequest`` in the payload yields a Meet link.
        """
        params = {"calendarId": calendar_id, "body": payload}
        if conference:
            params["conferenceDataVersion"] = 1
        if send_updates:
            params["sendUpdates"] = send_updates

        try:
            created = self.service.events().insert(**params).execute()
        except HttpError as e:
            raise _provider_error(e, "Create event") from e
        return ProviderEvent.from_api(created)

    def update_event(
        self,
        calendar_id: str,
        event_id: str,
        patch: dict,
    ) -> ProviderEvent:
        """Patch (partial update) an event."""
        try:
            updated = self.service.events().patch(
                calendarId=calendar_id,
                eventId=event_id,
                body=patch,
            ).execute()
        except HttpError as e:
            raise _provider_error(e, "Update event") from e
        return ProviderEvent.from_api(updated)

    def delete_event(self, calendar_id: str, event_id: str) -> bool:
        """
        Delete an event.

        Returns False when the provider reports the event as already gone
        (404/410); other failures raise.
        """
        try:
            self.service.events().delete(
                calendarId=calendar_id,
                eventId=event_id,
            ).execute()
            return True
        except HttpError as e:
            error = _provider_error(e, "Delete event")
            if error.is_gone:
                logger.info(f"Event {event_id} already deleted on {calendar_id}")
                return False
            raise error from e


def _timed(value: datetime, time_zone: str) -> dict:
    return {"dateTime": to_rfc3339(value), "timeZone": time_zone}


def build_event_payload(
    summary: str,
    start: datetime,
    end: datetime,
    time_zone: str,
    description: Optional[str] = None,
    location: Optional[str] = None,
    attendees: Optional[list[str]] = None,
    reminders: Optional[list[dict]] = None,
) -> dict:
    """Event body for a manually created event."""
    event = {
        "summary": summary,
        "start": _timed(start, time_zone),
        "end": _timed(end, time_zone),
        "reminders": {"useDefault": False, "overrides": reminders} if reminders else {"useDefault": True},
    }
    if description:
        event["description"] = description
    if location:
        event["location"] = location
    if attendees:
        event["attendees"] = [{"email": email} for email in attendees]
    return event


def build_event_patch(
    time_zone: str,
    summary: Optional[str] = None,
    description: Optional[str] = None,
    location: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> dict:
    """Partial event body containing only the supplied fields."""
    patch = {}
    if summary:
        patch["summary"] = summary
    if description:
        patch["description"] = description
    if location:
        patch["location"] = location
    if start:
        patch["start"] = _timed(start, time_zone)
    if end:
        patch["end"] = _timed(end, time_zone)
    return patch


def build_focus_block_payload(
    title: str,
    start: datetime,
    end: datetime,
    time_zone: str,
    description: str = "Blocked for focused work",
) -> dict:
    """
    Focus block event structure.

    Private and opaque so other viewers see the time as busy without details.
    """
    settings = get_settings()
    return {
        "summary": f"{settings.focus_block_prefix} {title}",
        "description": description,
        "start": _timed(start, time_zone),
        "end": _timed(end, time_zone),
        "transparency": "opaque",
        "visibility": "private",
        "colorId": settings.focus_block_color_id,
    }


def build_booking_payload(
    booking_id: int,
    title: str,
    guest_name: str,
    guest_email: str,
    start: datetime,
    end: datetime,
    time_zone: str,
    location: Optional[str] = None,
    notes: Optional[str] = None,
) -> dict:
    """Booking meeting with the guest invited and a Meet link requested."""
    settings = get_settings()
    description = f"Booking confirmation\n\nGuest: {guest_name}\nEmail: {guest_email}"
    if notes:
        description += f"\n\nNotes: {notes}"

    event = {
        "summary": f"{title} with {guest_name}",
        "description": description,
        "start": _timed(start, time_zone),
        "end": _timed(end, time_zone),
        "attendees": [{"email": guest_email, "displayName": guest_name}],
        "reminders": {
            "useDefault": False,
            "overrides": [
                {"method": "email", "minutes": settings.booking_email_reminder_minutes},
                {"method": "popup", "minutes": settings.booking_popup_reminder_minutes},
            ],
        },
        "transparency": "opaque",
        "status": "confirmed",
        "conferenceData": {
            "createRequest": {
                "requestId": f"booking-{booking_id}",
                "conferenceSolutionKey": {"type": "hangoutsMeet"},
            },
        },
    }
    if location:
        event["location"] = location
    return event
