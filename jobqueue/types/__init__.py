"""
Type definitions for the job queue.
Contains input/output type definitions for all functions, grouped by module.
"""

from jobqueue.types.api import (
    EnqueueJobRequest,
    HealthResponse,
    JobListResponse,
    JobResponse,
    JobStatsResponse,
    RetryJobRequest,
)
from jobqueue.types.job import (
    JobRecord,
    JobResult,
    WorkOffResult,
)
from jobqueue.types.payload import (
    DeserializationError,
    Payload,
    build_payload,
    deserialize_payload,
    register_payload,
    serialize_payload,
)

__all__ = [
    # API types
    "EnqueueJobRequest",
    "JobResponse",
    "JobListResponse",
    "JobStatsResponse",
    "RetryJobRequest",
    "HealthResponse",
    # Job types
    "JobRecord",
    "JobResult",
    "WorkOffResult",
    # Payload types
    "Payload",
    "DeserializationError",
    "register_payload",
    "serialize_payload",
    "deserialize_payload",
    "build_payload",
]
