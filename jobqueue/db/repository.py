"""
Job repository for database operations.
Implements the data access patterns the worker's lock protocol relies on.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.constants import DEFAULT_CANDIDATE_LIMIT, DEFAULT_PRIORITY
from jobqueue.db.models import DelayedJob
from jobqueue.types.job import JobRecord

logger = logging.getLogger(__name__)


def db_time_now() -> datetime:
    """Current time as stored in the database (naive UTC)."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_db_time(value: datetime) -> datetime:
    """Normalize a datetime to naive UTC; naive values are assumed to be UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _owned_by(job_id: int, worker_name: str | None) -> list[Any]:
    filters: list[Any] = [DelayedJob.id == job_id]
    if worker_name is not None:
        filters.append(DelayedJob.locked_by == worker_name)
    return filters


class JobRepository:
    """
    Repository for delayed job database operations.

    Lock ownership is only ever changed through single conditional
    UPDATE statements whose WHERE clause re-checks the lock state, so
    two workers racing for the same row cannot both succeed.
    Callers own the session and commit it.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    async def create_job(
        self,
        handler: dict[str, Any],
        priority: int = DEFAULT_PRIORITY,
        run_at: datetime | None = None,
    ) -> JobRecord:
        """
        Insert a new job.

        Args:
            handler: The serialized payload.
            priority: Job priority (larger runs first).
            run_at: Earliest execution time, defaults to now.

        Returns:
            The created job.
        """
        now = db_time_now()
        job = DelayedJob(
            handler=handler,
            priority=priority,
            attempts=0,
            run_at=to_db_time(run_at) if run_at is not None else now,
            created_at=now,
            updated_at=now,
        )
        self._session.add(job)
        await self._session.flush()

        logger.info(
            "Created new job",
            extra={"job_id": job.id, "priority": priority, "run_at": job.run_at.isoformat()},
        )
        return JobRecord.from_model(job)

    async def get_job(self, job_id: int) -> JobRecord | None:
        """
        Get a job by ID.

        Args:
            job_id: The job ID.

        Returns:
            The job or None if not found.
        """
        stmt = (
            select(DelayedJob)
            .where(DelayedJob.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()
        return JobRecord.from_model(job) if job is not None else None

    async def list_jobs(
        self,
        failed: bool | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[JobRecord], int]:
        """
        List jobs with optional filtering.

        Args:
            failed: Only failed (True) or only active (False) jobs.
            limit: Maximum number of jobs to return.
            offset: Offset for pagination.

        Returns:
            Tuple of (jobs, total_count).
        """
        filters = []
        if failed is True:
            filters.append(DelayedJob.failed_at.is_not(None))
        elif failed is False:
            filters.append(DelayedJob.failed_at.is_(None))

        count_stmt = select(func.count()).select_from(DelayedJob).where(*filters)
        count_result = await self._session.execute(count_stmt)
        total = count_result.scalar() or 0

        stmt = (
            select(DelayedJob)
            .where(*filters)
            .order_by(DelayedJob.priority.desc(), DelayedJob.run_at.asc(), DelayedJob.id.asc())
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        jobs = [JobRecord.from_model(job) for job in result.scalars().all()]

        return jobs, total

    async def find_available(
        self,
        worker_name: str,
        max_run_time: timedelta,
        limit: int = DEFAULT_CANDIDATE_LIMIT,
        min_priority: int | None = None,
        max_priority: int | None = None,
        now: datetime | None = None,
    ) -> list[JobRecord]:
        """
        Select jobs a worker may try to lock, best first.

        A job qualifies when it is due, not failed, within the priority
        bounds, and either unlocked, locked longer than max_run_time ago,
        or already locked by this worker.

        Args:
            worker_name: Identity of the calling worker.
            max_run_time: Lock staleness horizon.
            limit: Maximum number of jobs to return.
            min_priority: Optional inclusive lower priority bound.
            max_priority: Optional inclusive upper priority bound.
            now: Reference time, defaults to now.

        Returns:
            Jobs ordered by priority descending, then run_at ascending.
        """
        now = now or db_time_now()
        stale_before = now - max_run_time

        filters = [
            DelayedJob.run_at <= now,
            or_(
                DelayedJob.locked_at.is_(None),
                DelayedJob.locked_at < stale_before,
                DelayedJob.locked_by == worker_name,
            ),
            DelayedJob.failed_at.is_(None),
        ]
        if min_priority is not None:
            filters.append(DelayedJob.priority >= min_priority)
        if max_priority is not None:
            filters.append(DelayedJob.priority <= max_priority)

        stmt = (
            select(DelayedJob)
            .where(and_(*filters))
            .order_by(DelayedJob.priority.desc(), DelayedJob.run_at.asc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return [JobRecord.from_model(job) for job in result.scalars().all()]

    async def lock_job(
        self,
        job_id: int,
        worker_name: str,
        max_run_time: timedelta,
        now: datetime,
    ) -> bool:
        """
        Take the lock on a job that is unlocked or whose lock is stale.

        The guard is evaluated by the database as part of the UPDATE, so
        of any number of concurrent callers at most one sees a row change.
        It also re-checks that the job is still due and has not failed,
        since the caller's snapshot may be out of date.

        Args:
            job_id: The job ID.
            worker_name: The worker taking the lock.
            max_run_time: Lock staleness horizon.
            now: Lock timestamp.

        Returns:
            True if the lock was taken, False otherwise.
        """
        stmt = (
            update(DelayedJob)
            .where(
                and_(
                    DelayedJob.id == job_id,
                    or_(
                        DelayedJob.locked_at.is_(None),
                        DelayedJob.locked_at < now - max_run_time,
                    ),
                    DelayedJob.run_at <= now,
                    DelayedJob.failed_at.is_(None),
                )
            )
            .values(locked_at=now, locked_by=worker_name, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def refresh_lock(self, job_id: int, worker_name: str, now: datetime) -> bool:
        """
        Refresh a lock this worker already holds.

        Used when a worker restarts under the same name and finds its
        own locks; staleness does not matter here.

        Args:
            job_id: The job ID.
            worker_name: The worker that holds the lock.
            now: New lock timestamp.

        Returns:
            True if the lock was refreshed, False otherwise.
        """
        stmt = (
            update(DelayedJob)
            .where(
                and_(
                    DelayedJob.id == job_id,
                    DelayedJob.locked_by == worker_name,
                    DelayedJob.failed_at.is_(None),
                )
            )
            .values(locked_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def reschedule_job(
        self,
        job_id: int,
        attempts: int,
        run_at: datetime,
        last_error: str,
        worker_name: str | None = None,
    ) -> bool:
        """
        Store a failed attempt and release the lock.

        Args:
            job_id: The job ID.
            attempts: New attempt count.
            run_at: Next eligible run time.
            last_error: Formatted failure detail.
            worker_name: When given, only update if this worker still holds the lock.

        Returns:
            True if the job was updated, False if it no longer exists
            or is locked by someone else.
        """
        stmt = (
            update(DelayedJob)
            .where(*_owned_by(job_id, worker_name))
            .values(
                attempts=attempts,
                run_at=run_at,
                last_error=last_error,
                locked_at=None,
                locked_by=None,
                updated_at=db_time_now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def mark_failed(
        self,
        job_id: int,
        attempts: int,
        last_error: str,
        failed_at: datetime,
        worker_name: str | None = None,
    ) -> bool:
        """
        Take a job out of rotation permanently, keeping it for inspection.

        Args:
            job_id: The job ID.
            attempts: Final attempt count.
            last_error: Formatted failure detail.
            failed_at: Failure timestamp.
            worker_name: When given, only update if this worker still holds the lock.

        Returns:
            True if the job was updated, False if it no longer exists
            or is locked by someone else.
        """
        stmt = (
            update(DelayedJob)
            .where(*_owned_by(job_id, worker_name))
            .values(
                attempts=attempts,
                last_error=last_error,
                failed_at=failed_at,
                locked_at=None,
                locked_by=None,
                updated_at=failed_at,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def delete_job(self, job_id: int, worker_name: str | None = None) -> bool:
        """
        Delete a job.

        Args:
            job_id: The job ID.
            worker_name: When given, only delete if this worker still holds the lock.

        Returns:
            True if a row was deleted.
        """
        stmt = (
            delete(DelayedJob)
            .where(*_owned_by(job_id, worker_name))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def clear_locks(self, worker_name: str) -> int:
        """
        Release every lock held by a worker.

        Args:
            worker_name: The worker whose locks are released.

        Returns:
            Number of released locks.
        """
        stmt = (
            update(DelayedJob)
            .where(DelayedJob.locked_by == worker_name)
            .values(locked_at=None, locked_by=None, updated_at=db_time_now())
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        count = result.rowcount

        if count > 0:
            logger.info(
                f"Cleared {count} locks",
                extra={"worker_name": worker_name},
            )

        return count

    async def retry_failed_job(
        self,
        job_id: int,
        reset_attempts: bool = True,
        now: datetime | None = None,
    ) -> JobRecord | None:
        """
        Put a permanently failed job back into rotation.

        Args:
            job_id: The job ID.
            reset_attempts: Whether to reset the attempt counter.
            now: New run time, defaults to now.

        Returns:
            The updated job, or None if not found or not failed.
        """
        now = now or db_time_now()
        values: dict[str, Any] = {
            "failed_at": None,
            "run_at": now,
            "locked_at": None,
            "locked_by": None,
            "updated_at": now,
        }
        if reset_attempts:
            values["attempts"] = 0
            values["last_error"] = None

        stmt = (
            update(DelayedJob)
            .where(
                and_(
                    DelayedJob.id == job_id,
                    DelayedJob.failed_at.is_not(None),
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)

        if result.rowcount != 1:
            return None

        logger.info("Failed job put back into rotation", extra={"job_id": job_id})
        return await self.get_job(job_id)

    async def get_job_stats(self, now: datetime | None = None) -> dict[str, int]:
        """
        Count jobs by scheduling state.

        Args:
            now: Reference time, defaults to now.

        Returns:
            Dictionary with total, ready, scheduled, locked and failed counts.
        """
        now = now or db_time_now()
        active = and_(DelayedJob.failed_at.is_(None), DelayedJob.locked_at.is_(None))

        stmt = select(
            func.count(),
            func.count().filter(and_(active, DelayedJob.run_at <= now)),
            func.count().filter(and_(active, DelayedJob.run_at > now)),
            func.count().filter(
                and_(DelayedJob.failed_at.is_(None), DelayedJob.locked_at.is_not(None))
            ),
            func.count().filter(DelayedJob.failed_at.is_not(None)),
        ).select_from(DelayedJob)

        result = await self._session.execute(stmt)
        total, ready, scheduled, locked, failed = result.one()
        return {
            "total": total or 0,
            "ready": ready or 0,
            "scheduled": scheduled or 0,
            "locked": locked or 0,
            "failed": failed or 0,
        }
