"""
SQLAlchemy database models.
Defines the delayed_jobs table.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jobqueue.constants import DEFAULT_PRIORITY


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class DelayedJob(Base):
    """
    One unit of deferred work and its scheduling metadata.

    This table is the only state shared between workers. Lock ownership
    (locked_at, locked_by) is only ever changed through conditional
    UPDATE statements, which is what keeps two workers from running the
    same job at once.

    All timestamps are stored as naive UTC.
    """

    __tablename__ = "delayed_jobs"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    # Larger priority runs first
    priority: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_PRIORITY,
        server_default="0",
    )

    # Failed executions so far
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    # Serialized payload: {"kind": ..., "data": {...}}
    handler: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
    )

    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # Scheduling
    run_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        index=True,
    )

    # Lock management
    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )
    locked_by: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
    )

    # Set when the retry budget is exhausted and failed jobs are retained
    failed_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        # Candidate polling: ORDER BY priority DESC, run_at ASC
        Index("ix_delayed_jobs_priority_run_at", "priority", "run_at"),
    )

    def __repr__(self) -> str:
        return (
            f"DelayedJob(id={self.id}, priority={self.priority}, "
            f"attempts={self.attempts}, locked_by={self.locked_by})"
        )
