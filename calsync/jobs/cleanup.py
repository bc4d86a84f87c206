"""Retention cleanup job."""

import logging
from datetime import timedelta

from calsync.config import get_settings
from calsync.database import get_database
from calsync.utils.timestamps import to_db_timestamp, utcnow

logger = logging.getLogger(__name__)


async def run_retention_cleanup() -> dict:
    """
    Prune rows that no sync or availability query will look at again.

    Retention policy:
    - Sync log entries: ``sync_log_retention_days``
    - Mirrored events that ended before the sync lookback plus
      ``past_event_retention_days``; periodic syncs never revisit them
    """
    settings = get_settings()
    db = await get_database()

    summary = {"old_sync_logs": 0, "past_events": 0}

    # created_at is written by SQLite as "YYYY-MM-DD HH:MM:SS"
    cursor = await db.execute(
        "DELETE FROM sync_log WHERE created_at < datetime('now', ?) RETURNING id",
        (f"-{settings.sync_log_retention_days} days",),
    )
    summary["old_sync_logs"] = len(await cursor.fetchall())

    event_cutoff = utcnow() - timedelta(
        days=settings.sync_lookback_days + settings.past_event_retention_days
    )
    cursor = await db.execute(
        "DELETE FROM synced_events WHERE end_time < ? RETURNING external_event_id",
        (to_db_timestamp(event_cutoff),),
    )
    summary["past_events"] = len(await cursor.fetchall())

    await db.commit()

    logger.info(f"Retention cleanup completed: {summary}")
    return summary
