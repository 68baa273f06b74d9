"""
Retry policy for failed jobs.
"""

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta

from jobqueue.constants import MAX_ATTEMPTS, SPAN_RESCHEDULE_JOB, FailureDisposition
from jobqueue.db import get_session_context
from jobqueue.db.repository import JobRepository, db_time_now
from jobqueue.observability.metrics import get_metrics
from jobqueue.observability.tracing import get_tracer
from jobqueue.types.job import JobRecord

logger = logging.getLogger(__name__)


def backoff_seconds(attempts: int) -> int:
    """
    Delay before the next run, given the failures before this one.

    0 -> 5s, 1 -> 6s, 2 -> 21s, 3 -> 86s, ... 24 -> ~3.8 days.
    """
    return attempts**4 + 5


def format_error(message: str, backtrace: Sequence[str] = ()) -> str:
    """Join an error message and its backtrace for last_error."""
    return "\n".join([message, *backtrace])


class RetryPolicy:
    """
    Decides what happens to a job after a failed run.

    Each failure increments attempts. Until the count reaches
    max_attempts the job is rescheduled with polynomial backoff and its
    lock released; the failure that reaches max_attempts is terminal and
    the job is either deleted or kept with failed_at set.
    """

    def __init__(self, max_attempts: int = MAX_ATTEMPTS, destroy_failed_jobs: bool = True):
        self.max_attempts = max_attempts
        self.destroy_failed_jobs = destroy_failed_jobs

    def next_run_at(self, attempts: int, now: datetime) -> datetime:
        return now + timedelta(seconds=backoff_seconds(attempts))

    async def reschedule(
        self,
        job: JobRecord,
        message: str,
        backtrace: Sequence[str] = (),
        now: datetime | None = None,
    ) -> FailureDisposition:
        """
        Record a failed run and persist the job's next state.

        The in-memory record is updated to match what was written. Every
        write is conditional on the job still being locked by
        job.locked_by; if another worker has taken it over in the
        meantime nothing is written and LOCK_LOST is returned.

        Args:
            job: The job that failed (locked by the caller).
            message: Failure message.
            backtrace: Formatted backtrace lines.
            now: Failure time, defaults to now.

        Returns:
            What was done with the job.
        """
        now = now or db_time_now()
        attempts = job.attempts + 1
        last_error = format_error(message, backtrace)

        with get_tracer().start_as_current_span(SPAN_RESCHEDULE_JOB) as span:
            span.set_attribute("job.id", job.id)
            span.set_attribute("job.attempts", attempts)

            async with get_session_context() as session:
                repo = JobRepository(session)

                if attempts < self.max_attempts:
                    run_at = self.next_run_at(job.attempts, now)
                    written = await repo.reschedule_job(
                        job.id,
                        attempts=attempts,
                        run_at=run_at,
                        last_error=last_error,
                        worker_name=job.locked_by,
                    )
                    disposition = FailureDisposition.RESCHEDULED
                elif self.destroy_failed_jobs:
                    written = await repo.delete_job(job.id, worker_name=job.locked_by)
                    disposition = FailureDisposition.DESTROYED
                else:
                    written = await repo.mark_failed(
                        job.id,
                        attempts=attempts,
                        last_error=last_error,
                        failed_at=now,
                        worker_name=job.locked_by,
                    )
                    disposition = FailureDisposition.MARKED_FAILED

            if not written:
                disposition = FailureDisposition.LOCK_LOST
            span.set_attribute("job.disposition", disposition.value)

        if disposition is FailureDisposition.LOCK_LOST:
            logger.warning(
                f"{job.name} failed but {job.locked_by} no longer holds its lock; "
                "leaving it to the current owner",
                extra={"job_id": job.id, "worker_name": job.locked_by},
            )
            return disposition

        if disposition is FailureDisposition.RESCHEDULED:
            job.run_at = run_at
        elif disposition is FailureDisposition.MARKED_FAILED:
            job.failed_at = now
        job.attempts = attempts
        job.last_error = last_error
        job.unlock()

        if disposition is FailureDisposition.RESCHEDULED:
            logger.info(
                f"Rescheduled {job.name} for {job.run_at.isoformat()}",
                extra={"job_id": job.id, "attempts": attempts},
            )
        else:
            logger.info(
                f"PERMANENTLY removing {job.name} because of {attempts} consecutive failures",
                extra={"job_id": job.id, "disposition": disposition.value},
            )
            get_metrics().record_permanent_failure(disposition.value)

        return disposition
