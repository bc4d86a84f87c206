"""Core sync engine: refresh the local mirror from the provider."""

import asyncio
import json
import logging
from datetime import timedelta
from typing import Optional

from calsync import connections as connection_store
from calsync.auth.credentials import get_valid_access_token
from calsync.config import get_settings
from calsync.database import log_sync_action
from calsync.errors import AuthError, CalendarSyncError, PartialSyncError, ProviderError
from calsync.models import (
    CalendarInfo,
    CalendarRef,
    Connection,
    MirroredEvent,
    SyncResult,
    SyncStatus,
)
from calsync.sync import mirror
from calsync.sync.google_calendar import DEFAULT_CALENDAR_ID, GoogleCalendarClient
from calsync.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

# Per-connection locks so a periodic sync and a manual "sync now" never
# interleave their window deletes and inserts.
_connection_locks: dict[int, asyncio.Lock] = {}
_connection_locks_guard = asyncio.Lock()


async def _get_connection_lock(connection_id: int) -> asyncio.Lock:
    """Get or create the asyncio lock for one connection."""
    async with _connection_locks_guard:
        if connection_id not in _connection_locks:
            _connection_locks[connection_id] = asyncio.Lock()
        return _connection_locks[connection_id]


async def is_sync_in_progress(connection_id: int) -> bool:
    lock = await _get_connection_lock(connection_id)
    return lock.locked()


async def forget_connection_lock(connection_id: int) -> None:
    """Drop the lock of a disconnected connection."""
    async with _connection_locks_guard:
        lock = _connection_locks.get(connection_id)
        if lock is not None and not lock.locked():
            del _connection_locks[connection_id]


def resolve_calendar_ids(connection: Connection, calendars: list[CalendarRef]) -> list[str]:
    """Subscribed calendars if configured, else the account's primary calendar."""
    if connection.settings.calendar_ids:
        return list(connection.settings.calendar_ids)

    primary = [calendar.id for calendar in calendars if calendar.primary]
    return primary or [DEFAULT_CALENDAR_ID]


def _primary_ids(connection: Connection, calendars: Optional[list[CalendarRef]]) -> set[str]:
    """Every id the account's own calendar may be mirrored under."""
    ids = {calendar.id for calendar in connection.settings.calendars if calendar.primary}
    ids.update(calendar.id for calendar in calendars or [] if calendar.primary)
    ids.add(DEFAULT_CALENDAR_ID)
    return ids


def _sync_calendar(
    client: GoogleCalendarClient,
    connection: Connection,
    calendar_id: str,
    time_min,
    time_max,
) -> list[MirroredEvent]:
    """Fetch one calendar's window and convert it to mirror rows."""
    events = client.list_events(calendar_id, time_min=time_min, time_max=time_max)
    live = [event for event in events if not event.is_cancelled]

    skipped = len(events) - len(live)
    if skipped:
        logger.debug(f"Skipping {skipped} cancelled events on {calendar_id}")

    return [MirroredEvent.from_provider_event(event, connection, calendar_id) for event in live]


async def sync_connection(connection: Connection, window_days: Optional[int] = None) -> SyncResult:
    """
    Refresh the mirror for ``connection`` over ``[now - 7d, now + window_days]``.

    Serialized per connection. A failing calendar is recorded in
    ``SyncResult.calendar_errors`` and does not stop the others; its mirror
    rows stay until a later sync reaches it. Credential failures, or every
    calendar failing, abort the attempt and leave the connection in
    ``error``. Timezone and calendar-list lookups fall back to the stored
    values.
    """
    lock = await _get_connection_lock(connection.id)
    async with lock:
        return await _sync_connection(connection, window_days)


async def _sync_connection(connection: Connection, window_days: Optional[int]) -> SyncResult:
    """Internal: perform the sync (must be called under the connection lock)."""
    settings = get_settings()
    window_days = window_days or settings.default_sync_days
    result = SyncResult(connection_id=connection.id)

    await connection_store.set_sync_status(connection.id, SyncStatus.SYNCING)

    try:
        access_token = await get_valid_access_token(connection)
        client = GoogleCalendarClient(access_token)

        try:
            timezone_name = client.get_timezone()
        except ProviderError as e:
            logger.warning(f"Connection {connection.id}: timezone lookup failed: {e}")
            timezone_name = connection.settings.timezone or "UTC"

        try:
            calendars = client.list_calendars()
        except ProviderError as e:
            logger.warning(f"Connection {connection.id}: calendar list failed: {e}")
            calendars = None
        calendar_ids = resolve_calendar_ids(connection, calendars or [])

        now = utcnow()
        time_min = now - timedelta(days=settings.sync_lookback_days)
        time_max = now + timedelta(days=window_days)

        rows: list[MirroredEvent] = []
        for calendar_id in calendar_ids:
            try:
                rows.extend(_sync_calendar(client, connection, calendar_id, time_min, time_max))
            except Exception as e:
                partial = PartialSyncError(calendar_id, str(e))
                logger.error(f"Connection {connection.id}: {partial}")
                result.calendar_errors[calendar_id] = partial.message

        if len(result.calendar_errors) == len(calendar_ids):
            raise CalendarSyncError("; ".join(
                f"{calendar_id}: {message}" for calendar_id, message in result.calendar_errors.items()
            ))

        keep = set(result.calendar_errors)
        # Mutations write the primary calendar's rows under its alias
        if keep & _primary_ids(connection, calendars):
            keep.add(DEFAULT_CALENDAR_ID)
        result.events_synced = await mirror.replace_window(
            connection.id, time_min, time_max, rows, keep_calendar_ids=keep
        )

        update: dict = {"timezone": timezone_name}
        if calendars is not None:
            update["calendars"] = [
                CalendarInfo(id=c.id, name=c.summary, primary=c.primary) for c in calendars
            ]
        new_settings = connection.settings.model_copy(update=update)
        await connection_store.mark_synced(connection.id, new_settings, synced_at=utcnow())

        result.timezone = timezone_name
        result.calendars_found = len(calendars or [])

    except AuthError as e:
        message = e.message
        logger.error(f"Credentials unavailable for connection {connection.id}: {message}")
        await connection_store.set_sync_status(connection.id, SyncStatus.ERROR, message)
        result.error = message
    except Exception as e:
        message = str(e) or e.__class__.__name__
        logger.error(f"Error syncing connection {connection.id}: {message}")
        await connection_store.set_sync_status(connection.id, SyncStatus.ERROR, message)
        result.error = message

    await log_sync_action(
        connection.user_id,
        connection.id,
        "sync",
        "failure" if result.error else ("partial" if result.calendar_errors else "success"),
        json.dumps(result.model_dump(exclude={"connection_id"})),
    )

    if result.ok:
        logger.info(f"Synced {result.events_synced} events for connection {connection.id}")
    return result


async def sync_user_connections(
    user_id: int,
    connection_id: Optional[int] = None,
    sync_days: Optional[int] = None,
    provider: str = "google",
) -> list[SyncResult]:
    """Sync one of the user's connections, or all of them for ``provider``."""
    if connection_id is not None:
        connection = await connection_store.get_connection(connection_id, user_id=user_id)
        targets = [connection] if connection else []
    else:
        targets = await connection_store.list_connections_for_user(user_id, provider)

    results = []
    for connection in targets:
        results.append(await sync_connection(connection, sync_days))
    return results


async def list_connection_calendars(connection: Connection) -> list[CalendarRef]:
    """Available calendars for ``connection`` without syncing anything."""
    access_token = await get_valid_access_token(connection)
    return GoogleCalendarClient(access_token).list_calendars()
