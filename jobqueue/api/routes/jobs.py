"""
Job management routes.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

# Registers the built-in payload kinds.
import jobqueue.worker.handlers  # noqa: F401
from jobqueue.constants import API_V1_PREFIX
from jobqueue.db import get_async_session
from jobqueue.db.repository import JobRepository
from jobqueue.queue import enqueue
from jobqueue.types.api import (
    EnqueueJobRequest,
    JobListResponse,
    JobResponse,
    JobStatsResponse,
    RetryJobRequest,
)
from jobqueue.types.payload import DeserializationError, build_payload

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/jobs", tags=["Jobs"])


@router.post(
    "",
    response_model=JobResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Enqueue a job",
    description="Enqueue a job of a registered payload kind.",
)
async def create_job(
    request: EnqueueJobRequest,
    session: AsyncSession = Depends(get_async_session),
) -> JobResponse:
    """
    Enqueue a new job.

    Args:
        request: Job kind, fields and scheduling options.
        session: Database session.

    Returns:
        JobResponse for the stored job.

    Raises:
        HTTPException: If the kind is unknown or the fields are invalid.
    """
    try:
        payload = build_payload(request.kind, request.data)
    except DeserializationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e

    job = await enqueue(
        session,
        payload,
        priority=request.priority,
        run_at=request.run_at,
    )
    await session.commit()

    return JobResponse.from_record(job)


@router.get(
    "",
    response_model=JobListResponse,
    summary="List jobs",
    description="List jobs in queue order, optionally only failed or only active ones.",
)
async def list_jobs(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    failed: bool | None = Query(default=None),
    session: AsyncSession = Depends(get_async_session),
) -> JobListResponse:
    repo = JobRepository(session)
    offset = (page - 1) * page_size

    jobs, total = await repo.list_jobs(
        failed=failed,
        limit=page_size,
        offset=offset,
    )

    return JobListResponse(
        jobs=[JobResponse.from_record(job) for job in jobs],
        total=total,
        page=page,
        page_size=page_size,
        has_next=(page * page_size) < total,
    )


@router.get(
    "/stats/summary",
    response_model=JobStatsResponse,
    summary="Get job statistics",
    description="Count jobs by scheduling state.",
)
async def get_job_stats(
    session: AsyncSession = Depends(get_async_session),
) -> JobStatsResponse:
    stats = await JobRepository(session).get_job_stats()
    return JobStatsResponse(**stats)


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Get job details",
    description="Get detailed information about a specific job.",
)
async def get_job(
    job_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> JobResponse:
    """
    Get job details by ID.

    Raises:
        HTTPException: If the job does not exist (it may have completed).
    """
    job = await JobRepository(session).get_job(job_id)

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    return JobResponse.from_record(job)


@router.post(
    "/{job_id}/retry",
    response_model=JobResponse,
    summary="Retry a failed job",
    description="Put a permanently failed job back into rotation.",
)
async def retry_job(
    job_id: int,
    request: RetryJobRequest | None = None,
    session: AsyncSession = Depends(get_async_session),
) -> JobResponse:
    """
    Retry a permanently failed job.

    Args:
        job_id: The job ID.
        request: Retry options.
        session: Database session.

    Returns:
        JobResponse for the rescheduled job.

    Raises:
        HTTPException: If the job is not found or has not failed.
    """
    request = request or RetryJobRequest()
    repo = JobRepository(session)

    job = await repo.get_job(job_id)

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    if not job.failed:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Job has not permanently failed",
        )

    updated_job = await repo.retry_failed_job(
        job_id,
        reset_attempts=request.reset_attempts,
    )
    await session.commit()

    if updated_job is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Job changed while retrying",
        )

    logger.info("Job retried", extra={"job_id": job_id})

    return JobResponse.from_record(updated_job)


@router.delete(
    "/{job_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a job",
    description="Remove a job from the queue.",
)
async def delete_job(
    job_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> Response:
    deleted = await JobRepository(session).delete_job(job_id)

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    await session.commit()
    logger.info("Job deleted", extra={"job_id": job_id})

    return Response(status_code=status.HTTP_204_NO_CONTENT)
