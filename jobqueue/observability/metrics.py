"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from jobqueue.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_COMPLETED,
    METRIC_JOBS_ENQUEUED,
    METRIC_JOBS_FAILED_PERMANENTLY,
    METRIC_LOCK_ATTEMPTS,
    METRIC_LOCKS_CLEARED,
    METRIC_WORK_OFF_THROUGHPUT,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Job enqueues and completions
    - Job execution duration
    - Lock attempts and lock cleanup
    - Permanent failures
    - Worker throughput
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            registry=self._registry,
        )

        # status: succeeded or failed
        self.jobs_completed = Counter(
            METRIC_JOBS_COMPLETED,
            "Total number of job executions",
            ["status"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["status"],
            buckets=(0.01, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0),
            registry=self._registry,
        )

        # outcome: acquired or contended
        self.lock_attempts = Counter(
            METRIC_LOCK_ATTEMPTS,
            "Total number of job lock attempts",
            ["worker_name", "outcome"],
            registry=self._registry,
        )

        self.jobs_failed_permanently = Counter(
            METRIC_JOBS_FAILED_PERMANENTLY,
            "Total number of jobs that exhausted their retries",
            ["disposition"],
            registry=self._registry,
        )

        self.work_off_throughput = Gauge(
            METRIC_WORK_OFF_THROUGHPUT,
            "Jobs per second processed in the last busy work_off cycle",
            ["worker_name"],
            registry=self._registry,
        )

        self.locks_cleared = Counter(
            METRIC_LOCKS_CLEARED,
            "Total number of locks released on worker exit",
            ["worker_name"],
            registry=self._registry,
        )

    def record_job_enqueued(self) -> None:
        """Record a job enqueue."""
        self.jobs_enqueued.inc()

    def record_job_completed(self, status: str, duration_seconds: float) -> None:
        """Record a finished job execution."""
        self.jobs_completed.labels(status=status).inc()
        self.job_duration.labels(status=status).observe(duration_seconds)

    def record_lock_attempt(self, worker_name: str, acquired: bool) -> None:
        """Record a lock attempt."""
        outcome = "acquired" if acquired else "contended"
        self.lock_attempts.labels(worker_name=worker_name, outcome=outcome).inc()

    def record_permanent_failure(self, disposition: str) -> None:
        """Record a job leaving rotation after exhausting its retries."""
        self.jobs_failed_permanently.labels(disposition=disposition).inc()

    def record_work_off(self, worker_name: str, jobs_per_second: float) -> None:
        """Record throughput of a work_off cycle."""
        self.work_off_throughput.labels(worker_name=worker_name).set(jobs_per_second)

    def record_locks_cleared(self, worker_name: str, count: int) -> None:
        """Record locks released on exit."""
        self.locks_cleared.labels(worker_name=worker_name).inc(count)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
