"""Initial schema: jobs, job configs, audit log and response backlog

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
    # Create enums using raw SQL with IF NOT EXISTS
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE job_state AS ENUM ('pending', 'running', 'completed', 'failed', 'canceled');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    op.execute("""
        DO $$ BEGIN
            CREATE TYPE log_level AS ENUM ('DEBUG', 'INFO', 'WARNING', 'ERROR');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    op.create_table(
        "jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("job_type", sa.String(255), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=True),
        sa.Column(
            "state",
            postgresql.ENUM(
                "pending", "running", "completed", "failed", "canceled",
                name="job_state", create_type=False,
            ),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("retries", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer, nullable=False, server_default="3"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("TRIM(job_type) <> ''", name="ck_jobs_job_type_not_blank"),
    )

    op.create_index("ix_jobs_owner_job_type", "jobs", ["owner_id", "job_type"])
    op.create_index("ix_jobs_state", "jobs", ["state"])
    op.create_index("ix_jobs_locked_at", "jobs", ["locked_at"])

    # Partial index for group discovery and running counts
    op.execute("""
        CREATE INDEX ix_jobs_live
        ON jobs (owner_id, job_type)
        WHERE state IN ('pending', 'running')
    """)

    op.create_table(
        "job_configs",
        sa.Column("job_type", sa.String(255), nullable=False),
        sa.Column("enabled", sa.Boolean, nullable=False),
        sa.Column("concurrency_limit", sa.Integer, nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("job_type"),
        sa.CheckConstraint("concurrency_limit > 0", name="ck_job_configs_concurrency_positive"),
    )

    # job_id carries no foreign key: audit entries outlive their job
    op.create_table(
        "job_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("job_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column(
            "level",
            postgresql.ENUM("DEBUG", "INFO", "WARNING", "ERROR", name="log_level", create_type=False),
            nullable=False,
            server_default="INFO",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_job_logs_job_id", "job_logs", ["job_id"])

    op.create_table(
        "http_responses",
        sa.Column("id", sa.Integer, autoincrement=True, nullable=False),
        sa.Column("status_code", sa.Integer, nullable=True),
        sa.Column("headers", postgresql.JSONB, nullable=True),
        sa.Column("content", sa.Text, nullable=True),
        sa.Column("error_msg", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_http_responses_created_at", "http_responses", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_http_responses_created_at")
    op.drop_table("http_responses")

    op.drop_index("ix_job_logs_job_id")
    op.drop_table("job_logs")

    op.drop_table("job_configs")

    op.execute("DROP INDEX IF EXISTS ix_jobs_live")
    op.drop_index("ix_jobs_locked_at")
    op.drop_index("ix_jobs_state")
    op.drop_index("ix_jobs_owner_job_type")
    op.drop_table("jobs")

    op.execute("DROP TYPE IF EXISTS log_level")
    op.execute("DROP TYPE IF EXISTS job_state")
