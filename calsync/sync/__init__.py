"""Sync engine module."""

from calsync.sync.engine import (
    list_connection_calendars,
    sync_connection,
    sync_user_connections,
)

__all__ = [
    "list_connection_calendars",
    "sync_connection",
    "sync_user_connections",
]
