"""
Unit tests for the job repository.
"""

from datetime import UTC, datetime, timedelta, timezone

import pytest_asyncio
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.db.models import DelayedJob
from jobqueue.db.repository import JobRepository, db_time_now, to_db_time

HANDLER = {"kind": "echo", "data": {"message": "test"}}
MAX_RUN_TIME = timedelta(hours=4)


class TestDbTime:
    """Tests for timestamp normalization."""

    def test_db_time_now_is_naive(self):
        assert db_time_now().tzinfo is None

    def test_to_db_time_converts_aware_to_utc(self):
        value = datetime(2026, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert to_db_time(value) == datetime(2026, 1, 1, 10, 0)

    def test_to_db_time_keeps_naive(self):
        value = datetime(2026, 1, 1, 12, 0)
        assert to_db_time(value) == value


class TestJobRepository:
    """Tests for JobRepository."""

    @pytest_asyncio.fixture
    async def repo(self, db_session: AsyncSession) -> JobRepository:
        """Create a repository instance."""
        return JobRepository(db_session)

    async def test_create_job_defaults(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """New jobs are unlocked, unfailed, and due now."""
        before = db_time_now()
        job = await repo.create_job(handler=HANDLER)
        await db_session.commit()

        assert job.id is not None
        assert job.handler == HANDLER
        assert job.priority == 0
        assert job.attempts == 0
        assert job.locked_at is None
        assert job.locked_by is None
        assert job.failed_at is None
        assert job.last_error is None
        assert job.run_at >= before

    async def test_create_job_normalizes_aware_run_at(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        run_at = datetime(2030, 6, 1, 8, 0, tzinfo=UTC)
        job = await repo.create_job(handler=HANDLER, priority=3, run_at=run_at)
        await db_session.commit()

        stored = await repo.get_job(job.id)
        assert stored is not None
        assert stored.run_at == datetime(2030, 6, 1, 8, 0)
        assert stored.priority == 3

    async def test_get_job_not_found(self, repo: JobRepository):
        assert await repo.get_job(999999) is None

    async def test_list_jobs_ordering_and_filter(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """Jobs are listed by priority, then run_at; failed filter applies."""
        now = db_time_now()
        low = await repo.create_job(handler=HANDLER, priority=0, run_at=now)
        high = await repo.create_job(handler=HANDLER, priority=5, run_at=now)
        failed = await repo.create_job(handler=HANDLER, priority=1, run_at=now)
        await repo.mark_failed(failed.id, attempts=25, last_error="boom", failed_at=now)
        await db_session.commit()

        jobs, total = await repo.list_jobs()
        assert total == 3
        assert [job.id for job in jobs] == [high.id, failed.id, low.id]

        failed_jobs, failed_total = await repo.list_jobs(failed=True)
        assert failed_total == 1
        assert failed_jobs[0].id == failed.id

        active_jobs, active_total = await repo.list_jobs(failed=False, limit=1)
        assert active_total == 2
        assert [job.id for job in active_jobs] == [high.id]

    async def test_find_available_filters(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """Only due, unfailed, unlocked (or stale, or own) jobs qualify."""
        now = db_time_now()
        past = now - timedelta(hours=6)
        due = await repo.create_job(handler=HANDLER, run_at=past)
        future = await repo.create_job(handler=HANDLER, run_at=now + timedelta(hours=1))
        locked = await repo.create_job(handler=HANDLER, run_at=past)
        stale = await repo.create_job(handler=HANDLER, run_at=past)
        own = await repo.create_job(handler=HANDLER, run_at=past)
        failed = await repo.create_job(handler=HANDLER, run_at=past)

        await repo.lock_job(locked.id, "other-worker", MAX_RUN_TIME, now - timedelta(minutes=5))
        await repo.lock_job(stale.id, "other-worker", MAX_RUN_TIME, now - timedelta(hours=5))
        await repo.lock_job(own.id, "me", MAX_RUN_TIME, now - timedelta(minutes=5))
        await repo.mark_failed(failed.id, attempts=25, last_error="boom", failed_at=now)
        await db_session.commit()

        jobs = await repo.find_available("me", MAX_RUN_TIME, limit=10, now=now)
        ids = {job.id for job in jobs}

        assert ids == {due.id, stale.id, own.id}
        assert future.id not in ids
        assert locked.id not in ids
        assert failed.id not in ids

    async def test_find_available_order_and_limit(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        now = db_time_now()
        older = await repo.create_job(handler=HANDLER, priority=1, run_at=now - timedelta(hours=2))
        newer = await repo.create_job(handler=HANDLER, priority=1, run_at=now - timedelta(hours=1))
        urgent = await repo.create_job(handler=HANDLER, priority=9, run_at=now)
        await repo.create_job(handler=HANDLER, priority=0, run_at=now)
        await db_session.commit()

        jobs = await repo.find_available("me", MAX_RUN_TIME, limit=3, now=now)

        assert [job.id for job in jobs] == [urgent.id, older.id, newer.id]

    async def test_find_available_priority_bounds(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        now = db_time_now()
        for priority in (-5, 0, 5, 10):
            await repo.create_job(handler=HANDLER, priority=priority, run_at=now)
        await db_session.commit()

        jobs = await repo.find_available(
            "me", MAX_RUN_TIME, limit=10, min_priority=0, max_priority=5, now=now
        )

        assert sorted(job.priority for job in jobs) == [0, 5]

    async def test_lock_job_only_when_unlocked_or_stale(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        now = db_time_now()
        job = await repo.create_job(handler=HANDLER, run_at=now)
        await db_session.commit()

        assert await repo.lock_job(job.id, "worker-1", MAX_RUN_TIME, now) is True
        assert await repo.lock_job(job.id, "worker-2", MAX_RUN_TIME, now) is False

        later = now + MAX_RUN_TIME + timedelta(seconds=1)
        assert await repo.lock_job(job.id, "worker-2", MAX_RUN_TIME, later) is True
        await db_session.commit()

        stored = await repo.get_job(job.id)
        assert stored.locked_by == "worker-2"
        assert stored.locked_at == later

    async def test_refresh_lock_requires_ownership(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        now = db_time_now()
        job = await repo.create_job(handler=HANDLER, run_at=now)
        await repo.lock_job(job.id, "worker-1", MAX_RUN_TIME, now)
        await db_session.commit()

        later = now + timedelta(minutes=1)
        assert await repo.refresh_lock(job.id, "worker-2", later) is False
        assert await repo.refresh_lock(job.id, "worker-1", later) is True
        await db_session.commit()

        stored = await repo.get_job(job.id)
        assert stored.locked_at == later

    async def test_lock_job_skips_failed_and_future_jobs(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """A stale candidate list must not revive a failed or rescheduled job."""
        now = db_time_now()
        failed = await repo.create_job(handler=HANDLER, run_at=now)
        await repo.mark_failed(failed.id, attempts=25, last_error="boom", failed_at=now)
        future = await repo.create_job(handler=HANDLER, run_at=now + timedelta(minutes=5))
        await db_session.commit()

        assert await repo.lock_job(failed.id, "worker-1", MAX_RUN_TIME, now) is False
        assert await repo.lock_job(future.id, "worker-1", MAX_RUN_TIME, now) is False
        await db_session.commit()

        assert (await repo.get_job(failed.id)).locked_by is None
        assert (await repo.get_job(future.id)).locked_by is None

    async def test_refresh_lock_skips_failed_job(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        now = db_time_now()
        job = await repo.create_job(handler=HANDLER, run_at=now)
        await repo.lock_job(job.id, "worker-1", MAX_RUN_TIME, now)
        await db_session.commit()
        await repo.mark_failed(job.id, attempts=25, last_error="boom", failed_at=now)
        await db_session.commit()

        # mark_failed cleared the lock, so put worker-1's name back on it
        await db_session.execute(
            update(DelayedJob).where(DelayedJob.id == job.id).values(locked_by="worker-1")
        )
        await db_session.commit()

        assert await repo.refresh_lock(job.id, "worker-1", now) is False

    async def test_writes_require_lock_owner(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        """A worker that lost its lock cannot reschedule, fail, or delete the job."""
        now = db_time_now()
        job = await repo.create_job(handler=HANDLER, run_at=now)
        await repo.lock_job(job.id, "worker-2", MAX_RUN_TIME, now)
        await db_session.commit()

        assert not await repo.reschedule_job(
            job.id, attempts=1, run_at=now, last_error="boom", worker_name="worker-1"
        )
        assert not await repo.mark_failed(
            job.id, attempts=25, last_error="boom", failed_at=now, worker_name="worker-1"
        )
        assert not await repo.delete_job(job.id, worker_name="worker-1")
        await db_session.commit()

        stored = await repo.get_job(job.id)
        assert stored.locked_by == "worker-2"
        assert stored.attempts == 0
        assert stored.failed_at is None

        assert await repo.delete_job(job.id, worker_name="worker-2") is True

    async def test_reschedule_job_releases_lock(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        now = db_time_now()
        job = await repo.create_job(handler=HANDLER, run_at=now)
        await repo.lock_job(job.id, "worker-1", MAX_RUN_TIME, now)
        next_run = now + timedelta(seconds=5)

        assert await repo.reschedule_job(job.id, attempts=1, run_at=next_run, last_error="boom")
        await db_session.commit()

        stored = await repo.get_job(job.id)
        assert stored.attempts == 1
        assert stored.run_at == next_run
        assert stored.last_error == "boom"
        assert stored.locked_at is None
        assert stored.locked_by is None

    async def test_delete_job(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        job = await repo.create_job(handler=HANDLER)
        await db_session.commit()

        assert await repo.delete_job(job.id) is True
        assert await repo.delete_job(job.id) is False
        await db_session.commit()

        assert await repo.get_job(job.id) is None

    async def test_clear_locks_only_touches_named_worker(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        now = db_time_now()
        mine = [await repo.create_job(handler=HANDLER, run_at=now) for _ in range(2)]
        theirs = await repo.create_job(handler=HANDLER, run_at=now)
        for job in mine:
            await repo.lock_job(job.id, "worker-1", MAX_RUN_TIME, now)
        await repo.lock_job(theirs.id, "worker-2", MAX_RUN_TIME, now)
        await db_session.commit()

        assert await repo.clear_locks("worker-1") == 2
        assert await repo.clear_locks("worker-1") == 0
        await db_session.commit()

        for job in mine:
            stored = await repo.get_job(job.id)
            assert stored.locked_by is None
            assert stored.locked_at is None
        assert (await repo.get_job(theirs.id)).locked_by == "worker-2"

    async def test_retry_failed_job(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        now = db_time_now()
        job = await repo.create_job(handler=HANDLER, run_at=now - timedelta(days=1))
        await repo.mark_failed(job.id, attempts=25, last_error="boom", failed_at=now)
        await db_session.commit()

        retried = await repo.retry_failed_job(job.id, now=now)
        await db_session.commit()

        assert retried is not None
        assert retried.failed_at is None
        assert retried.attempts == 0
        assert retried.last_error is None
        assert retried.run_at == now

    async def test_retry_failed_job_keeps_attempts(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        now = db_time_now()
        job = await repo.create_job(handler=HANDLER, run_at=now)
        await repo.mark_failed(job.id, attempts=25, last_error="boom", failed_at=now)
        await db_session.commit()

        retried = await repo.retry_failed_job(job.id, reset_attempts=False, now=now)

        assert retried.attempts == 25
        assert retried.last_error == "boom"

    async def test_retry_ignores_active_job(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        job = await repo.create_job(handler=HANDLER)
        await db_session.commit()

        assert await repo.retry_failed_job(job.id) is None

    async def test_get_job_stats(
        self,
        repo: JobRepository,
        db_session: AsyncSession,
    ):
        now = db_time_now()
        await repo.create_job(handler=HANDLER, run_at=now - timedelta(minutes=1))
        await repo.create_job(handler=HANDLER, run_at=now + timedelta(hours=1))
        locked = await repo.create_job(handler=HANDLER, run_at=now - timedelta(minutes=1))
        failed = await repo.create_job(handler=HANDLER, run_at=now - timedelta(minutes=1))
        await repo.lock_job(locked.id, "worker-1", MAX_RUN_TIME, now)
        await repo.mark_failed(failed.id, attempts=25, last_error="boom", failed_at=now)
        await db_session.commit()

        stats = await repo.get_job_stats(now=now)

        assert stats == {
            "total": 4,
            "ready": 1,
            "scheduled": 1,
            "locked": 1,
            "failed": 1,
        }
