"""
Candidate selection.
"""

import random
from datetime import datetime, timedelta

from jobqueue.config import WorkerConfig
from jobqueue.db import get_session_context
from jobqueue.db.repository import JobRepository
from jobqueue.types.job import JobRecord


class CandidateSelector:
    """
    Picks a short list of jobs a worker may try to lock.

    The database query decides which jobs make the list (the top `limit`
    by priority, then run_at); the list is then shuffled so that a fleet
    of workers does not pile onto the same head-of-queue job.
    """

    def __init__(self, config: WorkerConfig, rng: random.Random | None = None):
        """
        Args:
            config: The worker's configuration (identity, priority bounds,
                default max run time).
            rng: Random source for shuffling; a private instance by default.
        """
        self._config = config
        self._rng = rng or random.Random()

    async def find_available(
        self,
        limit: int | None = None,
        max_run_time: timedelta | None = None,
        now: datetime | None = None,
    ) -> list[JobRecord]:
        """
        Find lockable jobs in random order.

        Args:
            limit: Maximum number of candidates, defaults to the configured
                candidate limit.
            max_run_time: Lock staleness horizon, defaults to the configured one.
            now: Reference time, defaults to now.

        Returns:
            Up to `limit` candidate jobs, shuffled.
        """
        if limit is None:
            limit = self._config.candidate_limit
        if max_run_time is None:
            max_run_time = self._config.max_run_time

        async with get_session_context() as session:
            records = await JobRepository(session).find_available(
                worker_name=self._config.worker_name,
                max_run_time=max_run_time,
                limit=limit,
                min_priority=self._config.min_priority,
                max_priority=self._config.max_priority,
                now=now,
            )

        self._rng.shuffle(records)
        return records
