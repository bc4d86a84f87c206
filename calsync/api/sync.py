"""Sync invocation and sync log API endpoints."""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from calsync.api.deps import calendar_http_error, get_user_connection
from calsync.auth.session import User, get_current_user
from calsync.database import get_database
from calsync.errors import AuthError, ProviderError
from calsync.models import CalendarRef, SyncResult
from calsync.sync.engine import list_connection_calendars, sync_user_connections

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/calendar", tags=["sync"])


class SyncRequest(BaseModel):
    """Body of a sync invocation; ``action="listCalendars"`` only lists calendars."""
    connection_id: Optional[int] = None
    sync_days: Optional[int] = Field(default=None, ge=1, le=365)
    action: Optional[Literal["sync", "listCalendars"]] = None
    provider: str = "google"


class SyncResponse(BaseModel):
    success: bool
    results: list[SyncResult] = Field(default_factory=list)
    calendars: Optional[list[CalendarRef]] = None


class SyncLogEntry(BaseModel):
    """Sync log entry."""
    id: int
    connection_id: Optional[int] = None
    action: str
    status: str
    details: Optional[str] = None
    created_at: str


class SyncLogResponse(BaseModel):
    """Sync log response."""
    entries: list[SyncLogEntry]
    total: int
    page: int
    page_size: int


@router.post("/sync", response_model=SyncResponse)
async def invoke_sync(request: SyncRequest, user: User = Depends(get_current_user)):
    """Sync one or all of the caller's connections, or list a connection's calendars."""
    if request.action == "listCalendars":
        connection = await get_user_connection(user.id, request.connection_id)
        try:
            calendars = await list_connection_calendars(connection)
        except (AuthError, ProviderError) as e:
            raise calendar_http_error(e)
        return SyncResponse(success=True, calendars=calendars)

    if request.connection_id is not None:
        await get_user_connection(user.id, request.connection_id)

    results = await sync_user_connections(
        user.id,
        connection_id=request.connection_id,
        sync_days=request.sync_days,
        provider=request.provider,
    )
    return SyncResponse(success=all(result.ok for result in results), results=results)


@router.get("/sync/log", response_model=SyncLogResponse)
async def get_sync_log(
    user: User = Depends(get_current_user),
    page: int = 1,
    page_size: int = 50,
    connection_id: Optional[int] = None,
    status_filter: Optional[str] = None,
):
    """Get sync activity log for current user."""
    db = await get_database()

    query = " FROM sync_log WHERE user_id = ?"
    params: list = [user.id]

    if connection_id:
        query += " AND connection_id = ?"
        params.append(connection_id)

    if status_filter:
        query += " AND status = ?"
        params.append(status_filter)

    cursor = await db.execute("SELECT COUNT(*)" + query, params)
    total = (await cursor.fetchone())[0]

    cursor = await db.execute(
        "SELECT *" + query + " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
        params + [page_size, (page - 1) * page_size],
    )
    rows = await cursor.fetchall()

    entries = [
        SyncLogEntry(
            id=row["id"],
            connection_id=row["connection_id"],
            action=row["action"],
            status=row["status"],
            details=row["details"],
            created_at=row["created_at"],
        )
        for row in rows
    ]

    return SyncLogResponse(entries=entries, total=total, page=page, page_size=page_size)
