"""Database connection and schema management."""

import asyncio
import logging
from typing import Optional

import aiosqlite

from calsync.config import get_settings

logger = logging.getLogger(__name__)

# Global database connection
_db_connection: Optional[aiosqlite.Connection] = None
_db_lock = asyncio.Lock()


SCHEMA = """
-- Users of the scheduling product (owned by the account system)
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    display_name TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- One authenticated link between a user and a provider calendar account
CREATE TABLE IF NOT EXISTS calendar_connections (
    id INTEGER PRIMARY KEY,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    provider TEXT NOT NULL DEFAULT 'google',
    provider_email TEXT,
    provider_account_id TEXT,
    access_token_encrypted BLOB,
    refresh_token_encrypted BLOB,
    token_expires_at TEXT,
    sync_enabled BOOLEAN DEFAULT TRUE,
    sync_status TEXT NOT NULL DEFAULT 'pending',
    last_synced_at TEXT,
    sync_error TEXT,
    settings TEXT NOT NULL DEFAULT '{}',
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP,
    UNIQUE(user_id, provider)
);

-- Local mirror of provider events (replaced window-by-window on each sync)
CREATE TABLE IF NOT EXISTS synced_events (
    connection_id INTEGER NOT NULL REFERENCES calendar_connections(id) ON DELETE CASCADE,
    user_id INTEGER NOT NULL,
    calendar_id TEXT NOT NULL,
    external_event_id TEXT NOT NULL,
    title TEXT,
    description TEXT,
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    is_all_day BOOLEAN DEFAULT FALSE,
    location TEXT,
    status TEXT,
    is_busy BOOLEAN DEFAULT TRUE,
    attendees TEXT,
    raw_data TEXT,
    PRIMARY KEY (connection_id, external_event_id)
);

CREATE INDEX IF NOT EXISTS idx_synced_events_window
    ON synced_events(connection_id, calendar_id, start_time, end_time);
CREATE INDEX IF NOT EXISTS idx_synced_events_user
    ON synced_events(user_id, start_time);

-- Bookings made through a host's booking page
CREATE TABLE IF NOT EXISTS bookings (
    id INTEGER PRIMARY KEY,
    host_user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    guest_name TEXT NOT NULL,
    guest_email TEXT NOT NULL,
    start_time TEXT NOT NULL,
    duration_minutes INTEGER NOT NULL DEFAULT 30,
    title TEXT NOT NULL,
    location TEXT,
    notes TEXT,
    status TEXT,
    meeting_link TEXT,
    calendar_event_id TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP
);

-- Audit log of sync attempts and mutations
CREATE TABLE IF NOT EXISTS sync_log (
    id INTEGER PRIMARY KEY,
    user_id INTEGER REFERENCES users(id) ON DELETE CASCADE,
    connection_id INTEGER,
    action TEXT NOT NULL,
    status TEXT NOT NULL,
    details TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_sync_log_user ON sync_log(user_id, created_at);

-- Single-runner locks for scheduled jobs
CREATE TABLE IF NOT EXISTS job_locks (
    job_name TEXT PRIMARY KEY,
    locked_at TEXT NOT NULL,
    locked_by TEXT
);
"""


async def get_database() -> aiosqlite.Connection:
    """Get the database connection, creating it if necessary."""
    global _db_connection

    async with _db_lock:
        if _db_connection is None:
            settings = get_settings()
            _db_connection = await aiosqlite.connect(settings.database_path)
            _db_connection.row_factory = aiosqlite.Row
            await _db_connection.execute("PRAGMA foreign_keys = ON")
            await _db_connection.execute("PRAGMA journal_mode = WAL")
            await init_schema(_db_connection)
        return _db_connection


async def init_schema(db: aiosqlite.Connection) -> None:
    """Initialize database schema."""
    await db.executescript(SCHEMA)
    await db.commit()
    logger.info("Database schema initialized")


async def close_database() -> None:
    """Close the database connection."""
    global _db_connection

    async with _db_lock:
        if _db_connection is not None:
            await _db_connection.close()
            _db_connection = None
            logger.info("Database connection closed")


async def log_sync_action(
    user_id: Optional[int],
    connection_id: Optional[int],
    action: str,
    status: str,
    details: Optional[str] = None,
) -> None:
    """Append an entry to the sync audit log."""
    db = await get_database()
    await db.execute(
        """INSERT INTO sync_log (user_id, connection_id, action, status, details)
           VALUES (?, ?, ?, ?, ?)""",
        (user_id, connection_id, action, status, details),
    )
    await db.commit()
