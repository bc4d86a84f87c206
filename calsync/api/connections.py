"""Calendar connection management API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from calsync import connections as connection_store
from calsync.api.deps import get_user_connection
from calsync.auth.session import User, get_current_user
from calsync.database import log_sync_action
from calsync.models import ConnectionView
from calsync.sync.engine import forget_connection_lock
from calsync.utils.timestamps import get_zone

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/calendar/connections", tags=["connections"])


class ConnectionSettingsUpdate(BaseModel):
    """Partial update of a connection's settings."""
    timezone: Optional[str] = None
    calendar_ids: Optional[list[str]] = None
    buffer_minutes: Optional[int] = Field(default=None, ge=0, le=240)
    auto_block_focus: Optional[bool] = None


@router.get("", response_model=list[ConnectionView])
async def list_connections(user: User = Depends(get_current_user)):
    """List the caller's calendar connections."""
    connections = await connection_store.list_connections_for_user(user.id)
    return [ConnectionView.from_connection(connection) for connection in connections]


@router.patch("/{connection_id}/settings", response_model=ConnectionView)
async def update_connection_settings(
    connection_id: int,
    update: ConnectionSettingsUpdate,
    user: User = Depends(get_current_user),
):
    """Change timezone, subscribed calendars or buffers for a connection."""
    connection = await get_user_connection(user.id, connection_id)

    changes = update.model_dump(exclude_none=True)
    if "timezone" in changes and get_zone(changes["timezone"]).key != changes["timezone"]:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown timezone: {changes['timezone']}",
        )

    settings = connection.settings.model_copy(update=changes)
    await connection_store.update_settings(connection.id, settings)
    logger.info(f"Updated settings for connection {connection.id}: {sorted(changes)}")

    return ConnectionView.from_connection(connection.model_copy(update={"settings": settings}))


@router.delete("/{connection_id}")
async def disconnect(connection_id: int, user: User = Depends(get_current_user)):
    """Disconnect a calendar; its mirrored events go with it."""
    connection = await get_user_connection(user.id, connection_id)

    await connection_store.delete_connection(connection.id)
    await forget_connection_lock(connection.id)
    await log_sync_action(user.id, None, "disconnect", "success", connection.provider_email)

    return {"status": "ok", "message": "Calendar disconnected"}
