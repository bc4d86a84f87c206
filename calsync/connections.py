"""Persistence for calendar connections.

Connections are always loaded into :class:`~calsync.models.Connection` values
and passed explicitly; writers persist only the columns they change.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Optional

import aiosqlite

from calsync.database import get_database
from calsync.encryption import decrypt_value, encrypt_value
from calsync.models import Connection, ConnectionSettings, SyncStatus
from calsync.utils.timestamps import parse_timestamp, to_db_timestamp, utcnow

logger = logging.getLogger(__name__)


def _row_to_connection(row: aiosqlite.Row) -> Connection:
    return Connection(
        id=row["id"],
        user_id=row["user_id"],
        provider=row["provider"],
        provider_email=row["provider_email"],
        provider_account_id=row["provider_account_id"],
        access_token=decrypt_value(row["access_token_encrypted"]),
        refresh_token=decrypt_value(row["refresh_token_encrypted"]),
        token_expires_at=parse_timestamp(row["token_expires_at"]),
        sync_enabled=bool(row["sync_enabled"]),
        sync_status=SyncStatus(row["sync_status"]),
        last_synced_at=parse_timestamp(row["last_synced_at"]),
        sync_error=row["sync_error"],
        settings=ConnectionSettings.model_validate(json.loads(row["settings"] or "{}")),
    )


async def get_connection(connection_id: int, user_id: Optional[int] = None) -> Optional[Connection]:
    """Load a connection, optionally scoped to its owner."""
    db = await get_database()
    if user_id is None:
        cursor = await db.execute(
            "SELECT * FROM calendar_connections WHERE id = ?", (connection_id,)
        )
    else:
        cursor = await db.execute(
            "SELECT * FROM calendar_connections WHERE id = ? AND user_id = ?",
            (connection_id, user_id),
        )
    row = await cursor.fetchone()
    return _row_to_connection(row) if row else None


async def get_connection_for_user(user_id: int, provider: str = "google") -> Optional[Connection]:
    """The user's enabled connection for ``provider``, if any."""
    db = await get_database()
    cursor = await db.execute(
        """SELECT * FROM calendar_connections
           WHERE user_id = ? AND provider = ? AND sync_enabled = TRUE""",
        (user_id, provider),
    )
    row = await cursor.fetchone()
    return _row_to_connection(row) if row else None


async def list_connections_for_user(user_id: int, provider: Optional[str] = None) -> list[Connection]:
    db = await get_database()
    if provider:
        cursor = await db.execute(
            "SELECT * FROM calendar_connections WHERE user_id = ? AND provider = ? ORDER BY id",
            (user_id, provider),
        )
    else:
        cursor = await db.execute(
            "SELECT * FROM calendar_connections WHERE user_id = ? ORDER BY id",
            (user_id,),
        )
    return [_row_to_connection(row) for row in await cursor.fetchall()]


async def list_enabled_connections() -> list[Connection]:
    db = await get_database()
    cursor = await db.execute(
        "SELECT * FROM calendar_connections WHERE sync_enabled = TRUE ORDER BY id"
    )
    return [_row_to_connection(row) for row in await cursor.fetchall()]


async def list_connections_expiring_before(threshold: datetime) -> list[Connection]:
    """Enabled connections whose access token expires before ``threshold``."""
    db = await get_database()
    cursor = await db.execute(
        """SELECT * FROM calendar_connections
           WHERE sync_enabled = TRUE
             AND refresh_token_encrypted IS NOT NULL
             AND (token_expires_at IS NULL OR token_expires_at < ?)
           ORDER BY id""",
        (to_db_timestamp(threshold),),
    )
    return [_row_to_connection(row) for row in await cursor.fetchall()]


async def upsert_connection(
    user_id: int,
    provider: str,
    provider_email: Optional[str],
    provider_account_id: Optional[str],
    access_token: str,
    refresh_token: Optional[str],
    expires_in: Optional[int],
) -> Connection:
    """
    Create or update the user's connection for ``provider``.

    Reconnecting updates the existing row in place. Google omits the refresh
    token on re-consent in some cases, so an absent one keeps the stored value.
    """
    db = await get_database()
    now = utcnow()
    expiry = to_db_timestamp(now + timedelta(seconds=expires_in)) if expires_in else None

    cursor = await db.execute(
        """INSERT INTO calendar_connections
           (user_id, provider, provider_email, provider_account_id,
            access_token_encrypted, refresh_token_encrypted, token_expires_at,
            sync_enabled, sync_status, sync_error, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, TRUE, ?, NULL, ?)
           ON CONFLICT(user_id, provider) DO UPDATE SET
           provider_email = excluded.provider_email,
           provider_account_id = excluded.provider_account_id,
           access_token_encrypted = excluded.access_token_encrypted,
           refresh_token_encrypted = COALESCE(excluded.refresh_token_encrypted,
                                              calendar_connections.refresh_token_encrypted),
           token_expires_at = excluded.token_expires_at,
           sync_enabled = TRUE,
           sync_status = excluded.sync_status,
           sync_error = NULL,
           updated_at = excluded.updated_at
           RETURNING id""",
        (
            user_id,
            provider,
            provider_email,
            provider_account_id,
            encrypt_value(access_token),
            encrypt_value(refresh_token) if refresh_token else None,
            expiry,
            SyncStatus.PENDING.value,
            to_db_timestamp(now),
        ),
    )
    row = await cursor.fetchone()
    await db.commit()

    connection = await get_connection(row["id"])
    logger.info(f"Stored {provider} connection {connection.id} for user {user_id}")
    return connection


async def store_refreshed_tokens(
    connection_id: int,
    access_token: str,
    expires_at: datetime,
    refresh_token: Optional[str] = None,
) -> None:
    """Persist a refreshed access token and clear any stored error."""
    db = await get_database()
    params: list = [encrypt_value(access_token), to_db_timestamp(expires_at), to_db_timestamp(utcnow())]
    query = """UPDATE calendar_connections SET
               access_token_encrypted = ?, token_expires_at = ?, updated_at = ?,
               sync_error = NULL"""
    if refresh_token:
        query += ", refresh_token_encrypted = ?"
        params.append(encrypt_value(refresh_token))
    query += " WHERE id = ?"
    params.append(connection_id)

    await db.execute(query, params)
    await db.commit()


async def set_sync_status(
    connection_id: int,
    status: SyncStatus,
    error: Optional[str] = None,
) -> None:
    """Record a sync status transition; ``error`` is only kept for ERROR."""
    db = await get_database()
    await db.execute(
        """UPDATE calendar_connections SET
           sync_status = ?, sync_error = ?, updated_at = ?
           WHERE id = ?""",
        (status.value, error if status == SyncStatus.ERROR else None, to_db_timestamp(utcnow()), connection_id),
    )
    await db.commit()


async def mark_synced(connection_id: int, settings: ConnectionSettings, synced_at: datetime) -> None:
    db = await get_database()
    await db.execute(
        """UPDATE calendar_connections SET
           sync_status = ?, sync_error = NULL, last_synced_at = ?,
           settings = ?, updated_at = ?
           WHERE id = ?""",
        (
            SyncStatus.SYNCED.value,
            to_db_timestamp(synced_at),
            settings.model_dump_json(),
            to_db_timestamp(utcnow()),
            connection_id,
        ),
    )
    await db.commit()


async def update_settings(connection_id: int, settings: ConnectionSettings) -> None:
    db = await get_database()
    await db.execute(
        "UPDATE calendar_connections SET settings = ?, updated_at = ? WHERE id = ?",
        (settings.model_dump_json(), to_db_timestamp(utcnow()), connection_id),
    )
    await db.commit()


async def delete_connection(connection_id: int) -> bool:
    """Disconnect: remove the connection and, by cascade, its mirrored events."""
    db = await get_database()
    cursor = await db.execute(
        "DELETE FROM calendar_connections WHERE id = ?", (connection_id,)
    )
    await db.commit()
    deleted = cursor.rowcount > 0
    if deleted:
        logger.info(f"Deleted connection {connection_id} and its mirrored events")
    return deleted
