"""Periodic sync job."""

import logging
from datetime import timedelta

import aiosqlite

from calsync import connections as connection_store
from calsync.database import get_database
from calsync.sync.engine import is_sync_in_progress, sync_connection
from calsync.utils.timestamps import to_db_timestamp, utcnow

logger = logging.getLogger(__name__)


async def run_periodic_sync() -> None:
    """Refresh the mirror for every enabled connection."""
    if not await acquire_job_lock("periodic_sync"):
        logger.debug("Periodic sync already running, skipping")
        return

    try:
        connections = await connection_store.list_enabled_connections()
        logger.info(f"Running periodic sync for {len(connections)} connections")

        synced = 0
        for connection in connections:
            # A manual sync of this connection is already refreshing it
            if await is_sync_in_progress(connection.id):
                logger.debug(f"Connection {connection.id} is already syncing, skipping")
                continue

            try:
                result = await sync_connection(connection)
            except Exception as e:
                logger.error(f"Error syncing connection {connection.id}: {e}")
                continue
            if result.ok:
                synced += 1

        logger.info(f"Periodic sync completed: {synced}/{len(connections)} connections healthy")

    finally:
        await release_job_lock("periodic_sync")


async def acquire_job_lock(job_name: str, timeout_minutes: int = 30) -> bool:
    """
    Acquire a lock for a job.

    Returns True if lock acquired, False if job is already running.
    """
    db = await get_database()
    now = utcnow()
    cutoff = to_db_timestamp(now - timedelta(minutes=timeout_minutes))

    # Stale locks from a crashed run
    await db.execute(
        "DELETE FROM job_locks WHERE job_name = ? AND locked_at < ?",
        (job_name, cutoff),
    )
    await db.commit()

    try:
        await db.execute(
            "INSERT INTO job_locks (job_name, locked_at, locked_by) VALUES (?, ?, ?)",
            (job_name, to_db_timestamp(now), "worker"),
        )
        await db.commit()
        return True
    except aiosqlite.IntegrityError:
        return False


async def release_job_lock(job_name: str) -> None:
    """Release a job lock."""
    db = await get_database()
    await db.execute("DELETE FROM job_locks WHERE job_name = ?", (job_name,))
    await db.commit()
