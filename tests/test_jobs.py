"""Tests for scheduled jobs."""

from __future__ import annotations

import pytest

from calsync import connections as connection_store
from calsync.database import get_database
from calsync.models import SyncResult


async def _insert_user(email: str) -> int:
    db = await get_database()
    cursor = await db.execute(
        "INSERT INTO users (email, display_name) VALUES (?, ?) RETURNING id",
        (email, "User"),
    )
    row = await cursor.fetchone()
    await db.commit()
    return row["id"]


async def _connection(email: str):
    return await connection_store.upsert_connection(
        user_id=await _insert_user(email),
        provider="google",
        provider_email=email,
        provider_account_id=email,
        access_token="access",
        refresh_token="refresh",
        expires_in=3600,
    )


@pytest.mark.asyncio
async def test_job_lock_is_exclusive(test_db):
    from calsync.jobs.sync_job import acquire_job_lock, release_job_lock

    assert await acquire_job_lock("periodic_sync") is True
    assert await acquire_job_lock("periodic_sync") is False

    await release_job_lock("periodic_sync")
    assert await acquire_job_lock("periodic_sync") is True


@pytest.mark.asyncio
async def test_periodic_sync_continues_after_a_failing_connection(test_db, monkeypatch):
    from calsync.jobs import sync_job

    first = await _connection("a@example.com")
    second = await _connection("b@example.com")
    attempted = []

    async def fake_sync(connection, window_days=None):
        attempted.append(connection.id)
        if connection.id == first.id:
            raise RuntimeError("boom")
        return SyncResult(connection_id=connection.id)

    monkeypatch.setattr(sync_job, "sync_connection", fake_sync)

    await sync_job.run_periodic_sync()

    assert attempted == [first.id, second.id]
    assert await sync_job.acquire_job_lock("periodic_sync") is True


@pytest.mark.asyncio
async def test_periodic_sync_skips_connection_already_syncing(test_db, monkeypatch):
    from calsync.jobs import sync_job

    connection = await _connection("a@example.com")
    attempted = []

    async def busy(connection_id):
        return connection_id == connection.id

    async def fake_sync(conn, window_days=None):
        attempted.append(conn.id)
        return SyncResult(connection_id=conn.id)

    monkeypatch.setattr(sync_job, "is_sync_in_progress", busy)
    monkeypatch.setattr(sync_job, "sync_connection", fake_sync)

    await sync_job.run_periodic_sync()

    assert attempted == []


@pytest.mark.asyncio
async def test_periodic_sync_does_not_overlap_itself(test_db, monkeypatch):
    from calsync.jobs import sync_job

    await _connection("a@example.com")

    async def fail_sync(*_args, **_kwargs):
        raise AssertionError("should not run while locked")

    monkeypatch.setattr(sync_job, "sync_connection", fail_sync)
    await sync_job.acquire_job_lock("periodic_sync")

    await sync_job.run_periodic_sync()


@pytest.mark.asyncio
async def test_scheduler_registers_all_jobs():
    from calsync.jobs.scheduler import get_scheduler, setup_scheduler, shutdown_scheduler

    scheduler = setup_scheduler()
    try:
        assert get_scheduler() is scheduler
        assert {job.id for job in scheduler.get_jobs()} == {
            "periodic_sync",
            "token_refresh",
            "retention_cleanup",
        }
    finally:
        shutdown_scheduler()

    assert get_scheduler() is None


@pytest.mark.asyncio
async def test_retention_cleanup_prunes_old_logs_and_past_events(test_db):
    from calsync.jobs.cleanup import run_retention_cleanup

    connection = await _connection("a@example.com")
    db = test_db
    await db.execute(
        """INSERT INTO sync_log (user_id, connection_id, action, status, created_at)
           VALUES (?, ?, 'sync', 'success', '2000-01-01 00:00:00')""",
        (connection.user_id, connection.id),
    )
    await db.execute(
        """INSERT INTO sync_log (user_id, connection_id, action, status)
           VALUES (?, ?, 'sync', 'success')""",
        (connection.user_id, connection.id),
    )
    for event_id, start, end in [
        ("ancient", "2000-01-01T09:00:00Z", "2000-01-01T10:00:00Z"),
        ("upcoming", "2999-01-01T09:00:00Z", "2999-01-01T10:00:00Z"),
    ]:
        await db.execute(
            """INSERT INTO synced_events
               (connection_id, user_id, calendar_id, external_event_id, start_time, end_time)
               VALUES (?, ?, 'primary', ?, ?, ?)""",
            (connection.id, connection.user_id, event_id, start, end),
        )
    await db.commit()

    summary = await run_retention_cleanup()

    assert summary == {"old_sync_logs": 1, "past_events": 1}
    cursor = await db.execute("SELECT external_event_id FROM synced_events")
    assert [row["external_event_id"] for row in await cursor.fetchall()] == ["upcoming"]
    cursor = await db.execute("SELECT COUNT(*) AS n FROM sync_log")
    assert (await cursor.fetchone())["n"] == 1
