"""Local mirror of provider events (``synced_events``)."""

import json
import logging
from datetime import datetime
from typing import Iterable, Optional

import aiosqlite

from calsync.database import get_database
from calsync.models import MirroredEvent
from calsync.utils.timestamps import parse_timestamp, to_db_timestamp

logger = logging.getLogger(__name__)

_COLUMNS = (
    "connection_id, user_id, calendar_id, external_event_id, title, description, "
    "start_time, end_time, is_all_day, location, status, is_busy, attendees, raw_data"
)

_UPSERT = f"""INSERT INTO synced_events ({_COLUMNS})
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(connection_id, external_event_id) DO UPDATE SET
    user_id = excluded.user_id,
    calendar_id = excluded.calendar_id,
    title = excluded.title,
    description = excluded.description,
    start_time = excluded.start_time,
    end_time = excluded.end_time,
    is_all_day = excluded.is_all_day,
    location = excluded.location,
    status = excluded.status,
    is_busy = excluded.is_busy,
    attendees = excluded.attendees,
    raw_data = excluded.raw_data"""


def _to_params(event: MirroredEvent) -> tuple:
    return (
        event.connection_id,
        event.user_id,
        event.calendar_id,
        event.external_event_id,
        event.title,
        event.description,
        to_db_timestamp(event.start_time),
        to_db_timestamp(event.end_time),
        event.is_all_day,
        event.location,
        event.status,
        event.is_busy,
        json.dumps(event.attendees) if event.attendees else None,
        json.dumps(event.raw_data, sort_keys=True),
    )


def _row_to_event(row: aiosqlite.Row) -> MirroredEvent:
    return MirroredEvent(
        connection_id=row["connection_id"],
        user_id=row["user_id"],
        calendar_id=row["calendar_id"],
        external_event_id=row["external_event_id"],
        title=row["title"] or "Busy",
        description=row["description"],
        start_time=parse_timestamp(row["start_time"]),
        end_time=parse_timestamp(row["end_time"]),
        is_all_day=bool(row["is_all_day"]),
        location=row["location"],
        status=row["status"] or "confirmed",
        is_busy=bool(row["is_busy"]),
        attendees=json.loads(row["attendees"]) if row["attendees"] else [],
        raw_data=json.loads(row["raw_data"]) if row["raw_data"] else {},
    )


async def replace_window(
    connection_id: int,
    time_min: datetime,
    time_max: datetime,
    events: Iterable[MirroredEvent],
    keep_calendar_ids: Iterable[str] = (),
) -> int:
    """
    Replace the mirror for one connection's sync window.

    Every row of the connection lying entirely inside the window is deleted,
    whichever calendar wrote it, then the fresh set is written. Rows of
    ``keep_calendar_ids`` (calendars whose fetch failed) are left alone until
    a later sync succeeds. Events straddling the window edge are upserted on
    ``(connection_id, external_event_id)`` so a repeat sync produces the same
    rows.
    """
    db = await get_database()
    events = list(events)
    keep = sorted(set(keep_calendar_ids))

    query = """DELETE FROM synced_events
           WHERE connection_id = ?
             AND start_time >= ? AND end_time <= ?"""
    params: list = [connection_id, to_db_timestamp(time_min), to_db_timestamp(time_max)]
    if keep:
        query += f" AND calendar_id NOT IN ({','.join('?' * len(keep))})"
        params.extend(keep)

    cursor = await db.execute(query, params)
    removed = cursor.rowcount

    if events:
        await db.executemany(_UPSERT, [_to_params(event) for event in events])
    await db.commit()

    logger.debug(
        f"Mirror window replaced for connection {connection_id}: "
        f"{removed} removed, {len(events)} written"
    )
    return len(events)


async def upsert_event(event: MirroredEvent) -> None:
    db = await get_database()
    await db.execute(_UPSERT, _to_params(event))
    await db.commit()


async def delete_event(connection_id: int, external_event_id: str) -> bool:
    db = await get_database()
    cursor = await db.execute(
        "DELETE FROM synced_events WHERE connection_id = ? AND external_event_id = ?",
        (connection_id, external_event_id),
    )
    await db.commit()
    return cursor.rowcount > 0


async def get_event(connection_id: int, external_event_id: str) -> Optional[MirroredEvent]:
    db = await get_database()
    cursor = await db.execute(
        "SELECT * FROM synced_events WHERE connection_id = ? AND external_event_id = ?",
        (connection_id, external_event_id),
    )
    row = await cursor.fetchone()
    return _row_to_event(row) if row else None


async def list_events(
    user_id: Optional[int] = None,
    connection_id: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    busy_only: bool = False,
) -> list[MirroredEvent]:
    """Mirrored events overlapping ``[start, end)``, ordered by start time."""
    db = await get_database()

    query = "SELECT * FROM synced_events WHERE 1 = 1"
    params: list = []

    if user_id is not None:
        query += " AND user_id = ?"
        params.append(user_id)
    if connection_id is not None:
        query += " AND connection_id = ?"
        params.append(connection_id)
    if start is not None:
        query += " AND end_time > ?"
        params.append(to_db_timestamp(start))
    if end is not None:
        query += " AND start_time < ?"
        params.append(to_db_timestamp(end))
    if busy_only:
        query += " AND is_busy = TRUE"

    query += " ORDER BY start_time, external_event_id"
    cursor = await db.execute(query, params)
    return [_row_to_event(row) for row in await cursor.fetchall()]
