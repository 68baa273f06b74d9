"""Initial schema with delayed_jobs table

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "delayed_jobs",
        sa.Column("id", sa.Integer, autoincrement=True, nullable=False),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("handler", postgresql.JSONB, nullable=False),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("run_at", sa.DateTime, nullable=False),
        sa.Column("locked_at", sa.DateTime, nullable=True),
        sa.Column("locked_by", sa.String(255), nullable=True),
        sa.Column("failed_at", sa.DateTime, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime,
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime,
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("ix_delayed_jobs_run_at", "delayed_jobs", ["run_at"])
    op.create_index("ix_delayed_jobs_locked_by", "delayed_jobs", ["locked_by"])
    op.create_index("ix_delayed_jobs_priority_run_at", "delayed_jobs", ["priority", "run_at"])

    # Candidate polling only ever looks at jobs that have not failed
    op.execute("""
        CREATE INDEX ix_delayed_jobs_poll
        ON delayed_jobs (priority DESC, run_at)
        WHERE failed_at IS NULL
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_delayed_jobs_poll")
    op.drop_index("ix_delayed_jobs_priority_run_at")
    op.drop_index("ix_delayed_jobs_locked_by")
    op.drop_index("ix_delayed_jobs_run_at")

    op.drop_table("delayed_jobs")
