"""
Worker process for executing jobs.

The worker repeatedly picks a few candidate jobs, locks one, runs it, and
deletes or reschedules it. Any number of workers can run against the same
database; they never talk to each other.
"""

import asyncio
import contextlib
import logging
import signal
import time
from datetime import timedelta

from jobqueue.config import WorkerConfig, get_settings
from jobqueue.constants import SPAN_EXECUTE_JOB, WorkerState
from jobqueue.db import close_db, get_engine, get_session_context, init_db
from jobqueue.db.repository import JobRepository
from jobqueue.observability.logging import bind_worker_context, clear_context, setup_logging
from jobqueue.observability.metrics import get_metrics, setup_metrics
from jobqueue.observability.tracing import get_tracer, instrument_sqlalchemy, setup_tracing
from jobqueue.types.job import JobRecord, JobResult, WorkOffResult
from jobqueue.worker.handlers import execute_job
from jobqueue.worker.locking import lock_exclusively
from jobqueue.worker.pidfile import PidFile
from jobqueue.worker.retry import RetryPolicy
from jobqueue.worker.selector import CandidateSelector

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class Worker:
    """
    Job worker that polls for and executes jobs.

    Features:
    - Randomized candidate selection to spread workers over the queue
    - Lock acquisition by conditional update, with self-resume
    - Polynomial backoff retries and terminal failure handling
    - Graceful shutdown on SIGTERM/SIGINT
    - Releases all of its locks on exit, however the loop ends
    """

    def __init__(self, config: WorkerConfig | None = None):
        """
        Initialize the worker.

        Args:
            config: Worker configuration. Built from the environment if omitted.
        """
        self.config = config or WorkerConfig.from_settings(get_settings())
        self.selector = CandidateSelector(self.config)
        self.retry_policy = RetryPolicy(
            max_attempts=self.config.max_attempts,
            destroy_failed_jobs=self.config.destroy_failed_jobs,
        )
        self.state = WorkerState.IDLE

        self._stop_event = asyncio.Event()
        self._pid_file = PidFile(self.config.pid_dir)
        self._signal_loop: asyncio.AbstractEventLoop | None = None
        self._metrics = get_metrics()

    @property
    def worker_name(self) -> str:
        return self.config.worker_name

    @property
    def exiting(self) -> bool:
        """Whether shutdown has been requested."""
        return self._stop_event.is_set()

    async def start(self, install_signal_handlers: bool = True) -> None:
        """
        Run the polling loop until shutdown is requested.

        Args:
            install_signal_handlers: Register SIGTERM/SIGINT handlers that
                request a graceful shutdown.
        """
        bind_worker_context(self.worker_name)
        self.say(f"*** Starting job worker {self.worker_name}")

        try:
            self._pid_file.write()
            if install_signal_handlers:
                self._install_signal_handlers()

            while not self.exiting:
                self.state = WorkerState.RUNNING_BATCH

                started = time.perf_counter()
                result = await self.work_off()
                realtime = time.perf_counter() - started

                if result.total:
                    rate = result.total / realtime if realtime > 0 else float(result.total)
                    self.say(
                        f"{result.total} jobs processed at {rate:.4f} j/s, "
                        f"{result.failure} failed ..."
                    )
                    self._metrics.record_work_off(self.worker_name, rate)
                elif not self.exiting:
                    self.state = WorkerState.IDLE
                    await self._idle()
        finally:
            self.state = WorkerState.SHUTTING_DOWN
            try:
                await self.clear_locks()
            finally:
                self._remove_signal_handlers()
                self._pid_file.remove()
                logger.info("Worker stopped", extra={"worker_name": self.worker_name})
                clear_context()

    async def stop(self) -> None:
        """Request a graceful shutdown; the current job is allowed to finish."""
        self._request_stop()

    def _request_stop(self) -> None:
        if not self.exiting:
            self.say("Exiting...")
        self._stop_event.set()

    async def work_off(self, num: int | None = None) -> WorkOffResult:
        """
        Run up to `num` jobs.

        Stops early when no job could be locked or when shutdown is
        requested.

        Args:
            num: Maximum jobs to run, defaults to the configured batch size.

        Returns:
            Success and failure counts.
        """
        result = WorkOffResult()

        if num is None:
            num = self.config.batch_size

        for _ in range(num):
            outcome = await self.reserve_and_run_one_job()
            if outcome is None:
                break
            if outcome:
                result.success += 1
            else:
                result.failure += 1
            if self.exiting:
                break

        return result

    async def reserve_and_run_one_job(
        self,
        max_run_time: timedelta | None = None,
    ) -> bool | None:
        """
        Run the first candidate job this worker can lock.

        Several candidates are fetched in case others lock some of them
        first.

        Args:
            max_run_time: Lock staleness horizon, defaults to the configured one.

        Returns:
            True if a job succeeded, False if it failed, None if no
            candidate could be locked.
        """
        if max_run_time is None:
            max_run_time = self.config.max_run_time
        candidates = await self.selector.find_available(
            limit=self.config.candidate_limit,
            max_run_time=max_run_time,
        )

        for job in candidates:
            outcome = await self.run_with_lock(job, max_run_time)
            if outcome is not None:
                return outcome

        return None

    async def run_with_lock(
        self,
        job: JobRecord,
        max_run_time: timedelta | None = None,
        worker_name: str | None = None,
    ) -> bool | None:
        """
        Lock and run a single job.

        Args:
            job: The candidate job.
            max_run_time: Lock staleness horizon, defaults to the configured one.
            worker_name: Lock identity, defaults to this worker's name.

        Returns:
            True if the job succeeded, False if it failed, None if the
            lock could not be acquired.
        """
        if max_run_time is None:
            max_run_time = self.config.max_run_time
        worker_name = worker_name or self.worker_name

        logger.info(f"Acquiring lock on {job.name}", extra={"job_id": job.id})
        if not await lock_exclusively(job, max_run_time, worker_name):
            logger.warning(
                f"Failed to acquire exclusive lock for {job.name}",
                extra={"job_id": job.id},
            )
            return None

        with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
            span.set_attribute("job.id", job.id)
            span.set_attribute("job.name", job.name)
            span.set_attribute("job.attempts", job.attempts)

            result = await execute_job(job)

            span.set_attribute("job.success", result.success)

        duration = (result.duration_ms or 0.0) / 1000

        if result.success:
            async with get_session_context() as session:
                deleted = await JobRepository(session).delete_job(job.id, worker_name=worker_name)

            if not deleted:
                logger.warning(
                    f"{job.name} finished but {worker_name} no longer holds its lock; "
                    "leaving it to the current owner",
                    extra={"job_id": job.id},
                )

            logger.info(
                f"{job.name} completed after {duration:.4f}",
                extra={"job_id": job.id, "duration": duration},
            )
            self._metrics.record_job_completed(status="succeeded", duration_seconds=duration)
            return True

        await self.retry_policy.reschedule(
            job,
            result.error or "Unknown error",
            result.backtrace,
        )
        self.log_failure(job, result)
        self._metrics.record_job_completed(status="failed", duration_seconds=duration)
        return False

    async def clear_locks(self) -> int:
        """
        Release every lock held under this worker's name.

        Returns:
            Number of released locks.
        """
        async with get_session_context() as session:
            count = await JobRepository(session).clear_locks(self.worker_name)

        self._metrics.record_locks_cleared(self.worker_name, count)
        return count

    def log_failure(self, job: JobRecord, result: JobResult) -> None:
        """Report a failed run. Override to send failures elsewhere too."""
        logger.error(
            f"{job.name} failed with {result.error} - {job.attempts} failed attempts",
            extra={
                "job_id": job.id,
                "attempts": job.attempts,
                "backtrace": "\n".join(result.backtrace),
            },
        )

    def say(self, text: str) -> None:
        """Print to the console unless quiet; always log."""
        if not self.config.quiet:
            print(text, flush=True)
        logger.info(text)

    async def _idle(self) -> None:
        """Sleep between empty polling cycles; wakes early on shutdown."""
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.sleep_seconds)

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        self._signal_loop = loop
        for sig in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(sig, self._request_stop)

    def _remove_signal_handlers(self) -> None:
        if self._signal_loop is None:
            return
        for sig in SHUTDOWN_SIGNALS:
            self._signal_loop.remove_signal_handler(sig)
        self._signal_loop = None


async def run_async() -> None:
    """Run the worker asynchronously."""
    setup_logging()
    setup_metrics()
    setup_tracing()
    await init_db()

    settings = get_settings()
    if settings.otel_enabled:
        instrument_sqlalchemy(get_engine())

    worker = Worker(WorkerConfig.from_settings(settings))

    try:
        await worker.start()
    finally:
        await close_db()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
