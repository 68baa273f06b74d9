"""
Built-in payloads and job invocation.

Payloads must tolerate being run more than once: a worker that crashes
mid-job leaves the lock behind, and the job runs again once the lock
goes stale or the worker restarts under the same name.
"""

import asyncio
import logging
import time
import traceback
from typing import Any

import httpx
from pydantic import Field

from jobqueue.types.job import JobRecord, JobResult
from jobqueue.types.payload import DeserializationError, Payload, register_payload

logger = logging.getLogger(__name__)


# ============================================================================
# Built-in payloads
# ============================================================================


@register_payload("echo")
class EchoPayload(Payload):
    """Logs its message. Useful for smoke tests."""

    message: str = ""

    async def perform(self) -> None:
        logger.info("Echo job executing", extra={"echo": self.message})

    @property
    def display_name(self) -> str:
        return f"Echo({self.message[:40]})"


@register_payload("sleep")
class SleepPayload(Payload):
    """Sleeps for duration_seconds."""

    duration_seconds: float = Field(default=1.0, ge=0)

    async def perform(self) -> None:
        await asyncio.sleep(self.duration_seconds)


@register_payload("fail")
class FailPayload(Payload):
    """
    Always fails, for exercising retries.

    Returns a failed result, or raises when raise_error is set.
    """

    reason: str = "Intentional failure"
    raise_error: bool = False

    async def perform(self) -> JobResult:
        if self.raise_error:
            raise RuntimeError(self.reason)
        return JobResult.failed(self.reason)


@register_payload("http_request")
class HttpRequestPayload(Payload):
    """
    Make an HTTP request; any non-2xx response is a failure.
    """

    url: str
    method: str = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    timeout_seconds: float = 30.0

    async def perform(self) -> JobResult:
        method = self.method.upper()
        async with httpx.AsyncClient() as client:
            response = await client.request(
                method=method,
                url=self.url,
                headers=self.headers,
                json=self.body if method in ("POST", "PUT", "PATCH") else None,
                timeout=self.timeout_seconds,
            )

        if response.is_success:
            return JobResult.ok()
        return JobResult.failed(f"HTTP {response.status_code} from {method} {self.url}")

    @property
    def display_name(self) -> str:
        return f"HttpRequest({self.method.upper()} {self.url})"


# ============================================================================
# Invocation
# ============================================================================


def _failure_result(error: Exception) -> JobResult:
    backtrace = [line.rstrip("\n") for line in traceback.format_exception(error)]
    return JobResult.failed(f"{type(error).__name__}: {error}", backtrace=backtrace)


async def execute_job(job: JobRecord) -> JobResult:
    """
    Run a job's payload and report the outcome as a JobResult.

    Nothing raised by the payload (or by loading it) escapes: exceptions
    become failed results carrying the message and formatted backtrace.

    Args:
        job: The locked job to run.

    Returns:
        JobResult describing success or failure.
    """
    started = time.perf_counter()

    try:
        payload = job.payload_object
    except DeserializationError as e:
        logger.error(
            f"Cannot load payload for job {job.id}",
            extra={"job_id": job.id, "error": str(e)},
        )
        return _failure_result(e)

    try:
        result = await payload.perform()
    except Exception as e:
        result = _failure_result(e)

    # Anything other than a JobResult (None included) counts as success
    if not isinstance(result, JobResult):
        result = JobResult.ok()

    result.duration_ms = (time.perf_counter() - started) * 1000
    return result
