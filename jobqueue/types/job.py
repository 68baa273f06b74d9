"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from jobqueue.constants import PAYLOAD_KIND_KEY

if TYPE_CHECKING:
    from jobqueue.db.models import DelayedJob
    from jobqueue.types.payload import Payload


class JobResult(BaseModel):
    """
    Result of invoking a job payload.

    Payload failures never unwind into the worker loop; they are turned
    into a failed result carrying the error message and backtrace, which
    the retry policy consumes.
    """

    success: bool
    error: str | None = None
    backtrace: list[str] = Field(default_factory=list)
    duration_ms: float | None = None

    @classmethod
    def ok(cls) -> "JobResult":
        return cls(success=True)

    @classmethod
    def failed(cls, error: str, backtrace: list[str] | None = None) -> "JobResult":
        return cls(success=False, error=error, backtrace=backtrace or [])


@dataclass
class WorkOffResult:
    """Tally of one work_off cycle."""

    success: int = 0
    failure: int = 0

    @property
    def total(self) -> int:
        return self.success + self.failure


@dataclass
class JobRecord:
    """
    Caller-local snapshot of a delayed_jobs row.

    Mutating a record never touches the database; changes are written
    back through explicit repository operations only.
    """

    id: int
    priority: int
    attempts: int
    handler: dict[str, Any]
    run_at: datetime
    last_error: str | None = None
    locked_at: datetime | None = None
    locked_by: str | None = None
    failed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    _name: str | None = field(default=None, init=False, repr=False, compare=False)

    @classmethod
    def from_model(cls, job: "DelayedJob") -> "JobRecord":
        """Copy a mapped row into a detached record."""
        return cls(
            id=job.id,
            priority=job.priority,
            attempts=job.attempts,
            handler=dict(job.handler),
            run_at=job.run_at,
            last_error=job.last_error,
            locked_at=job.locked_at,
            locked_by=job.locked_by,
            failed_at=job.failed_at,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )

    @property
    def failed(self) -> bool:
        """Check if the job has permanently failed."""
        return self.failed_at is not None

    @property
    def kind(self) -> str:
        return str(self.handler.get(PAYLOAD_KIND_KEY, "unknown"))

    @property
    def payload_object(self) -> "Payload":
        """
        Deserialize the stored payload.

        Raises:
            DeserializationError: If the handler cannot be loaded.
        """
        from jobqueue.types.payload import deserialize_payload

        return deserialize_payload(self.handler)

    @property
    def name(self) -> str:
        """Display name for logs; falls back to the payload kind."""
        if self._name is None:
            from jobqueue.types.payload import DeserializationError

            try:
                self._name = self.payload_object.display_name
            except DeserializationError:
                self._name = self.kind
        return self._name

    def unlock(self) -> None:
        """Clear the in-memory lock fields (not saved)."""
        self.locked_at = None
        self.locked_by = None
