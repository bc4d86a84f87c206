"""Typed records for connections, mirrored events and provider payloads.

Provider payloads are parsed into these schemas at the Google client boundary;
nothing past ``calsync.sync.google_calendar`` reads raw provider JSON except
the opaque ``raw_data`` audit column.
"""

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from calsync.utils.timestamps import ensure_utc, parse_timestamp, utcnow


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Provider schemas
# ---------------------------------------------------------------------------


class _ProviderModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class EventDateTime(_ProviderModel):
    """Google ``start``/``end``: either ``dateTime`` or all-day ``date``."""

    date_time: Optional[str] = Field(default=None, alias="dateTime")
    date: Optional[str] = None
    time_zone: Optional[str] = Field(default=None, alias="timeZone")

    @property
    def is_all_day(self) -> bool:
        return self.date_time is None and self.date is not None

    def to_datetime(self) -> datetime:
        """Resolve to aware UTC; all-day dates map to midnight UTC."""
        if self.date_time:
            return parse_timestamp(self.date_time)
        if self.date:
            return ensure_utc(datetime.combine(date.fromisoformat(self.date), datetime.min.time()))
        raise ValueError("Event time has neither dateTime nor date")


class Attendee(_ProviderModel):
    email: Optional[str] = None
    display_name: Optional[str] = Field(default=None, alias="displayName")
    response_status: Optional[str] = Field(default=None, alias="responseStatus")
    is_self: bool = Field(default=False, alias="self")


class EntryPoint(_ProviderModel):
    entry_point_type: Optional[str] = Field(default=None, alias="entryPointType")
    uri: Optional[str] = None


class ConferenceData(_ProviderModel):
    entry_points: list[EntryPoint] = Field(default_factory=list, alias="entryPoints")

    def video_uri(self) -> Optional[str]:
        for entry in self.entry_points:
            if entry.entry_point_type == "video" and entry.uri:
                return entry.uri
        return None


class ProviderEvent(_ProviderModel):
    """A single (already expanded) Google Calendar event."""

    id: str
    status: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    start: EventDateTime = Field(default_factory=EventDateTime)
    end: EventDateTime = Field(default_factory=EventDateTime)
    transparency: Optional[str] = None
    visibility: Optional[str] = None
    attendees: list[Attendee] = Field(default_factory=list)
    conference_data: Optional[ConferenceData] = Field(default=None, alias="conferenceData")
    html_link: Optional[str] = Field(default=None, alias="htmlLink")
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @classmethod
    def from_api(cls, payload: dict) -> "ProviderEvent":
        event = cls.model_validate(payload)
        event.raw = payload
        return event

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"

    @property
    def is_all_day(self) -> bool:
        return self.start.is_all_day

    @property
    def is_busy(self) -> bool:
        """Transparent ("show as free") and self-declined events don't block time."""
        if self.transparency == "transparent":
            return False
        for attendee in self.attendees:
            if attendee.is_self and attendee.response_status == "declined":
                return False
        return True

    @property
    def meeting_link(self) -> Optional[str]:
        if self.conference_data:
            return self.conference_data.video_uri()
        return None


class CalendarRef(_ProviderModel):
    id: str
    summary: Optional[str] = None
    primary: bool = False
    time_zone: Optional[str] = Field(default=None, alias="timeZone")
    access_role: Optional[str] = Field(default=None, alias="accessRole")


# ---------------------------------------------------------------------------
# Connection and mirror
# ---------------------------------------------------------------------------


class CalendarInfo(BaseModel):
    """Calendar metadata remembered in connection settings after a sync."""

    id: str
    name: Optional[str] = None
    primary: bool = False


class ConnectionSettings(BaseModel):
    """Per-connection preferences stored as JSON on the connection row."""

    model_config = ConfigDict(extra="ignore")

    timezone: str = "UTC"
    calendar_ids: list[str] = Field(default_factory=list)
    buffer_minutes: int = 0
    auto_block_focus: bool = False
    calendars: list[CalendarInfo] = Field(default_factory=list)


class Connection(BaseModel):
    """A user's authenticated link to one provider account."""

    id: int
    user_id: int
    provider: str = "google"
    provider_email: Optional[str] = None
    provider_account_id: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    sync_enabled: bool = True
    sync_status: SyncStatus = SyncStatus.PENDING
    last_synced_at: Optional[datetime] = None
    sync_error: Optional[str] = None
    settings: ConnectionSettings = Field(default_factory=ConnectionSettings)

    def has_fresh_token(self, buffer_minutes: int = 5, now: Optional[datetime] = None) -> bool:
        """Access token is usable only if it outlives ``now`` by the safety buffer."""
        if not self.access_token or not self.token_expires_at:
            return False
        now = now or utcnow()
        return ensure_utc(self.token_expires_at) - timedelta(minutes=buffer_minutes) > now


class ConnectionView(BaseModel):
    """Connection as exposed over the API (no secrets)."""

    id: int
    provider: str
    provider_email: Optional[str] = None
    sync_enabled: bool
    sync_status: SyncStatus
    last_synced_at: Optional[datetime] = None
    sync_error: Optional[str] = None
    settings: ConnectionSettings

    @classmethod
    def from_connection(cls, connection: Connection) -> "ConnectionView":
        return cls(
            id=connection.id,
            provider=connection.provider,
            provider_email=connection.provider_email,
            sync_enabled=connection.sync_enabled,
            sync_status=connection.sync_status,
            last_synced_at=connection.last_synced_at,
            sync_error=connection.sync_error,
            settings=connection.settings,
        )


class MirroredEvent(BaseModel):
    """Local cache row for one provider event."""

    connection_id: int
    user_id: int
    calendar_id: str
    external_event_id: str
    title: str = "Busy"
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    is_all_day: bool = False
    location: Optional[str] = None
    status: str = "confirmed"
    is_busy: bool = True
    attendees: list[str] = Field(default_factory=list)
    raw_data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_provider_event(
        cls,
        event: ProviderEvent,
        connection: Connection,
        calendar_id: str,
        is_busy: Optional[bool] = None,
    ) -> "MirroredEvent":
        return cls(
            connection_id=connection.id,
            user_id=connection.user_id,
            calendar_id=calendar_id,
            external_event_id=event.id,
            title=event.summary or "Busy",
            description=event.description,
            start_time=event.start.to_datetime(),
            end_time=event.end.to_datetime(),
            is_all_day=event.is_all_day,
            location=event.meeting_link or event.location,
            status=event.status or "confirmed",
            is_busy=event.is_busy if is_busy is None else is_busy,
            attendees=[a.email for a in event.attendees if a.email],
            raw_data=event.raw,
        )


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


class BusyInterval(BaseModel):
    start: datetime
    end: datetime


class TimeSlot(BaseModel):
    """A free interval: a gap between busy events or a fixed-length slot."""

    start: datetime
    end: datetime

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


class SlotSuggestion(TimeSlot):
    score: int
    reason: str


class AlternativeSlot(BaseModel):
    start: datetime
    end: datetime
    label: str


class SchedulingPreferences(BaseModel):
    preferred_start_hour: int = 9
    preferred_end_hour: int = 17
    prefer_morning: bool = False
    prefer_afternoon: bool = False
    avoid_back_to_back: bool = True
    min_gap_minutes: int = 30


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class SyncResult(BaseModel):
    """Outcome of one sync attempt for one connection."""

    connection_id: int
    events_synced: int = 0
    timezone: Optional[str] = None
    calendars_found: int = 0
    calendar_errors: dict[str, str] = Field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Booking(BaseModel):
    id: int
    host_user_id: int
    guest_name: str
    guest_email: str
    start_time: datetime
    duration_minutes: int = 30
    title: str
    location: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[str] = None
    meeting_link: Optional[str] = None
    calendar_event_id: Optional[str] = None

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)


class BookingMeetingResult(BaseModel):
    """Result of confirming a booking's calendar event.

    ``skipped`` means the calendar event was not created but the booking
    itself stands.
    """

    success: bool
    skipped: bool = False
    reason: Optional[str] = None
    event_id: Optional[str] = None
    event_link: Optional[str] = None
    meeting_link: Optional[str] = None
    error: Optional[str] = None
