"""
SQLAlchemy database models.
Defines the job store, job type configuration, audit log and response backlog.
"""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jobrelay.clock import utcnow
from jobrelay.constants import (
    DEFAULT_CONCURRENCY_LIMIT,
    DEFAULT_MAX_RETRIES,
    JobState,
    LogLevel,
)

# JSONB on PostgreSQL, plain JSON elsewhere (tests run against SQLite)
JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing a unit of work dispatched to a worker endpoint.

    This is the authoritative source of truth for job state.
    All job lifecycle transitions are managed through this table.

    Key constraints:
    - job_type is never blank
    - locked_at (the lease) is set exactly while the job is running
    - completed, failed and canceled rows are never updated again
    """

    __tablename__ = "jobs"

    # Primary key, doubles as the correlation token sent to workers
    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
        nullable=False,
    )

    # Owner and routing
    owner_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    job_type: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    # Opaque payload forwarded to the worker as the request body
    payload: Mapped[Any | None] = mapped_column(
        JsonType,
        nullable=True,
    )

    state: Mapped[JobState] = mapped_column(
        Enum(JobState, name="job_state", create_constraint=True, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=JobState.PENDING,
    )

    # Retry tracking
    retries: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_retries: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_RETRIES,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    last_run_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    next_run_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Lease
    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )

    __table_args__ = (
        CheckConstraint("TRIM(job_type) <> ''", name="ck_jobs_job_type_not_blank"),
        Index("ix_jobs_owner_job_type", "owner_id", "job_type"),
        Index("ix_jobs_state", "state"),
        # Group discovery and running counts only look at live jobs
        Index(
            "ix_jobs_live",
            "owner_id",
            "job_type",
            postgresql_where=(
                Column("state").in_([JobState.PENDING.value, JobState.RUNNING.value])
            ),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, owner={self.owner_id}, type={self.job_type}, "
            f"state={self.state}, retries={self.retries}/{self.max_retries})"
        )


class JobConfig(Base):
    """
    Per job type scheduling configuration.

    A job type without a row here is never dispatched.
    """

    __tablename__ = "job_configs"

    job_type: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )
    enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
    )
    concurrency_limit: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_CONCURRENCY_LIMIT,
    )

    __table_args__ = (
        CheckConstraint("concurrency_limit > 0", name="ck_job_configs_concurrency_positive"),
    )

    def __repr__(self) -> str:
        return (
            f"JobConfig(job_type={self.job_type}, enabled={self.enabled}, "
            f"concurrency_limit={self.concurrency_limit})"
        )


class JobLog(Base):
    """
    Append-only audit trail entry for a job.

    job_id is not a foreign key: entries outlive the job row.
    """

    __tablename__ = "job_logs"

    id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    job_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        index=True,
    )
    message: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    level: Mapped[LogLevel] = mapped_column(
        Enum(LogLevel, name="log_level", create_constraint=True, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=LogLevel.INFO,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )


class HttpResponse(Base):
    """
    Inbound response backlog of the asynchronous transport.

    One row per finished outbound request. Rows without headers are
    transport failures (timeout, connection refused) and can never be
    attributed to a job.
    """

    __tablename__ = "http_responses"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    status_code: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    headers: Mapped[dict | None] = mapped_column(
        JsonType,
        nullable=True,
    )
    content: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    error_msg: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True,
    )
