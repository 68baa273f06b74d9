"""
Exclusive job locking.

Which worker runs a job is decided by the database alone: each attempt is
one conditional UPDATE committed in its own transaction. There is no
in-process lock, so this is safe across any number of worker processes.
"""

import logging
from datetime import datetime, timedelta

from jobqueue.constants import SPAN_LOCK_JOB
from jobqueue.db import get_session_context
from jobqueue.db.repository import JobRepository, db_time_now
from jobqueue.observability.metrics import get_metrics
from jobqueue.observability.tracing import get_tracer
from jobqueue.types.job import JobRecord

logger = logging.getLogger(__name__)


async def lock_exclusively(
    job: JobRecord,
    max_run_time: timedelta,
    worker_name: str,
    now: datetime | None = None,
) -> bool:
    """
    Try to claim a job for a worker.

    If the job is not already ours, the lock is taken only when the row is
    unlocked or its lock is older than max_run_time. If the job is already
    locked by this worker (it crashed and restarted under the same name),
    the lock timestamp is refreshed regardless of staleness.

    On success the record's lock fields are updated in memory; on failure
    the record is left untouched.

    Args:
        job: The candidate job.
        max_run_time: Lock staleness horizon.
        worker_name: The worker claiming the job.
        now: Lock timestamp, defaults to now.

    Returns:
        True if this worker now holds the lock.
    """
    now = now or db_time_now()
    resuming = job.locked_by == worker_name

    with get_tracer().start_as_current_span(SPAN_LOCK_JOB) as span:
        span.set_attribute("job.id", job.id)
        span.set_attribute("worker.name", worker_name)
        span.set_attribute("lock.resume", resuming)

        async with get_session_context() as session:
            repo = JobRepository(session)
            if resuming:
                locked = await repo.refresh_lock(job.id, worker_name, now)
            else:
                locked = await repo.lock_job(job.id, worker_name, max_run_time, now)

        span.set_attribute("lock.acquired", locked)

    get_metrics().record_lock_attempt(worker_name, locked)

    if locked:
        job.locked_at = now
        job.locked_by = worker_name
        logger.debug(
            "Lock acquired",
            extra={"job_id": job.id, "worker_name": worker_name, "resumed": resuming},
        )

    return locked
