"""Shared helpers for the calendar API endpoints."""

import logging
from typing import Optional

from fastapi import HTTPException, status

from calsync import connections as connection_store
from calsync.errors import AuthError, CalendarSyncError, ProviderError
from calsync.models import Connection

logger = logging.getLogger(__name__)


async def get_user_connection(user_id: int, connection_id: Optional[int] = None) -> Connection:
    """The caller's connection by id, or their Google connection; 404 if missing."""
    if connection_id is not None:
        connection = await connection_store.get_connection(connection_id, user_id=user_id)
    else:
        connection = await connection_store.get_connection_for_user(user_id)

    if not connection:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Calendar connection not found",
        )
    return connection


def calendar_http_error(error: CalendarSyncError) -> HTTPException:
    """Translate a calendar error into the response the caller should see."""
    if isinstance(error, AuthError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": error.message, "code": error.code.value},
        )

    if isinstance(error, ProviderError):
        code = error.status if error.status and 400 <= error.status < 600 else status.HTTP_502_BAD_GATEWAY
        return HTTPException(status_code=code, detail=f"Calendar provider error: {error.body or error.status}")

    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
