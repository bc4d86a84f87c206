"""Access/refresh token lifecycle for a single connection."""

import logging
from datetime import timedelta
from typing import Optional

from calsync import connections as connection_store
from calsync.auth.google import OAuthRequestError, refresh_access_token
from calsync.config import get_settings
from calsync.errors import AuthError, OAuthErrorCode
from calsync.models import Connection, SyncStatus
from calsync.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

PROACTIVE_REFRESH_MINUTES = 60


async def refresh_connection_credentials(
    connection: Connection,
    buffer_minutes: Optional[int] = None,
) -> Connection:
    """
    Return ``connection`` with a usable access token.

    A token that outlives the safety buffer is reused without touching the
    network. Otherwise the refresh token is exchanged and the new access token
    and expiry are persisted. Failures mark the connection ``error`` and raise
    :class:`AuthError`; nothing is retried here.
    """
    if buffer_minutes is None:
        buffer_minutes = get_settings().token_expiry_buffer_minutes
    if connection.has_fresh_token(buffer_minutes):
        return connection

    if not connection.refresh_token:
        message = "No refresh token available; reconnect the calendar"
        await connection_store.set_sync_status(connection.id, SyncStatus.ERROR, message)
        raise AuthError(message, OAuthErrorCode.INVALID_GRANT)

    logger.info(f"Refreshing access token for connection {connection.id}")
    try:
        tokens = await refresh_access_token(connection.refresh_token)
    except (OAuthRequestError, ValueError) as e:
        code = e.code if isinstance(e, OAuthRequestError) else OAuthErrorCode.INVALID_CLIENT
        message = f"Token refresh failed: {e}"
        logger.error(f"Connection {connection.id}: {message}")
        await connection_store.set_sync_status(connection.id, SyncStatus.ERROR, message)
        raise AuthError(message, code) from e

    access_token = tokens["access_token"]
    expires_at = utcnow() + timedelta(seconds=int(tokens.get("expires_in", 3600)))
    rotated_refresh = tokens.get("refresh_token")

    await connection_store.store_refreshed_tokens(
        connection.id,
        access_token=access_token,
        expires_at=expires_at,
        refresh_token=rotated_refresh,
    )

    return connection.model_copy(
        update={
            "access_token": access_token,
            "token_expires_at": expires_at,
            "refresh_token": rotated_refresh or connection.refresh_token,
            "sync_error": None,
        }
    )


async def get_valid_access_token(connection: Connection) -> str:
    """Get a valid access token for ``connection``, refreshing if needed."""
    refreshed = await refresh_connection_credentials(connection)
    return refreshed.access_token


async def refresh_expiring_tokens() -> None:
    """Proactively refresh tokens that expire within the next hour."""
    threshold = utcnow() + timedelta(minutes=PROACTIVE_REFRESH_MINUTES)
    expiring = await connection_store.list_connections_expiring_before(threshold)

    if not expiring:
        return

    logger.info(f"Refreshing {len(expiring)} expiring tokens")

    for connection in expiring:
        try:
            await refresh_connection_credentials(connection, buffer_minutes=PROACTIVE_REFRESH_MINUTES)
        except AuthError as e:
            logger.warning(f"Could not refresh token for connection {connection.id}: {e.message}")
