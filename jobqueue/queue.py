"""
Job submission.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.constants import DEFAULT_PRIORITY, SPAN_ENQUEUE_JOB
from jobqueue.db.repository import JobRepository
from jobqueue.observability.metrics import get_metrics
from jobqueue.observability.tracing import get_tracer
from jobqueue.types.job import JobRecord
from jobqueue.types.payload import serialize_payload

logger = logging.getLogger(__name__)


async def enqueue(
    session: AsyncSession,
    payload: Any,
    priority: int = DEFAULT_PRIORITY,
    run_at: datetime | None = None,
) -> JobRecord:
    """
    Add a job to the queue.

    The caller owns the session and commits it.

    Args:
        session: The async database session.
        payload: A registered Payload instance.
        priority: Job priority (larger runs first).
        run_at: Earliest execution time; aware datetimes are converted
            to UTC, None means now.

    Returns:
        The created job.

    Raises:
        TypeError: If the payload is not a registered Payload.
    """
    handler = serialize_payload(payload)

    with get_tracer().start_as_current_span(SPAN_ENQUEUE_JOB) as span:
        span.set_attribute("payload.kind", handler["kind"])
        span.set_attribute("job.priority", priority)

        job = await JobRepository(session).create_job(
            handler=handler,
            priority=priority,
            run_at=run_at,
        )
        span.set_attribute("job.id", job.id)

    get_metrics().record_job_enqueued()
    logger.info(
        f"Enqueued {payload.display_name}",
        extra={"job_id": job.id, "priority": job.priority},
    )
    return job
