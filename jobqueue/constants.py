"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class WorkerState(StrEnum):
    """
    Worker loop states.

    State transitions:
    - IDLE -> RUNNING_BATCH (polling cycle starts)
    - RUNNING_BATCH -> IDLE (cycle found no work, sleeping)
    - RUNNING_BATCH -> SHUTTING_DOWN (shutdown requested or loop error)
    - IDLE -> SHUTTING_DOWN (shutdown requested while sleeping)
    """

    IDLE = "idle"
    RUNNING_BATCH = "running_batch"
    SHUTTING_DOWN = "shutting_down"


class FailureDisposition(StrEnum):
    """What the retry policy did with a failed job."""

    RESCHEDULED = "rescheduled"
    DESTROYED = "destroyed"
    MARKED_FAILED = "marked_failed"
    LOCK_LOST = "lock_lost"


# Retry budget: the failure that brings attempts to this value is terminal
MAX_ATTEMPTS = 25

# Locks older than this are considered stale and can be taken over
DEFAULT_MAX_RUN_TIME_SECONDS = 4 * 60 * 60

# Idle sleep between polling cycles that found no work
DEFAULT_SLEEP_SECONDS = 60.0

# Jobs attempted per work_off cycle
DEFAULT_WORK_OFF_BATCH = 100

# Candidates fetched per reservation attempt
DEFAULT_CANDIDATE_LIMIT = 5

DEFAULT_PRIORITY = 0

# Serialized payload layout
PAYLOAD_KIND_KEY = "kind"
PAYLOAD_DATA_KEY = "data"

PID_FILE_PREFIX = "jobqueue"

# API constants
API_V1_PREFIX = "/v1"

# Metrics names
METRIC_JOBS_ENQUEUED = "jobs_enqueued_total"
METRIC_JOBS_COMPLETED = "jobs_completed_total"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_LOCK_ATTEMPTS = "lock_attempts_total"
METRIC_JOBS_FAILED_PERMANENTLY = "jobs_failed_permanently_total"
METRIC_WORK_OFF_THROUGHPUT = "work_off_jobs_per_second"
METRIC_LOCKS_CLEARED = "locks_cleared_total"

# Trace span names
SPAN_ENQUEUE_JOB = "enqueue_job"
SPAN_LOCK_JOB = "lock_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_RESCHEDULE_JOB = "reschedule_job"
