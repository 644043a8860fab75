"""
Repositories for database operations.
Implements the data access patterns of the job store, the job type
configuration store and the transport's response backlog.
"""

import logging
from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import and_, delete, false, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobrelay.clock import utcnow
from jobrelay.constants import DEFAULT_CONCURRENCY_LIMIT, DEFAULT_MAX_RETRIES, JobState
from jobrelay.db.models import HttpResponse, Job, JobConfig

logger = logging.getLogger(__name__)


def _eligible_filter(now: datetime):
    """Pending, unleased, and past its backoff window."""
    return and_(
        Job.state == JobState.PENDING,
        Job.locked_at.is_(None),
        or_(Job.next_run_at.is_(None), Job.next_run_at <= now),
    )


class JobRepository:
    """
    Repository for job database operations.

    Every state transition is a single UPDATE guarded by the job id and the
    state the job must currently be in, so overlapping scheduler ticks can
    never apply a transition twice. Claims use FOR UPDATE SKIP LOCKED.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    async def create_job(
        self,
        owner_id: str,
        job_type: str,
        payload: Any,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> Job:
        """
        Insert a new pending job.

        Args:
            owner_id: The owner identifier.
            job_type: Job type, also the worker endpoint name.
            payload: Opaque payload forwarded to the worker.
            max_retries: Maximum number of attempts.

        Returns:
            The created Job.
        """
        now = utcnow()
        job = Job(
            owner_id=owner_id,
            job_type=job_type,
            payload=payload,
            state=JobState.PENDING,
            retries=0,
            max_retries=max_retries,
            created_at=now,
            updated_at=now,
        )
        self._session.add(job)
        await self._session.flush()

        logger.info(
            "Created new job",
            extra={"job_id": str(job.id), "owner_id": owner_id, "job_type": job_type},
        )
        return job

    async def get_job(self, job_id: UUID) -> Job | None:
        """
        Get a job by ID.

        Args:
            job_id: The job UUID.

        Returns:
            The Job or None if not found.
        """
        stmt = select(Job).where(Job.id == job_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_job_for_update(self, job_id: UUID) -> Job | None:
        """
        Get a job by ID and lock its row until the transaction ends.

        Args:
            job_id: The job UUID.

        Returns:
            The Job or None if not found.
        """
        stmt = (
            select(Job)
            .where(Job.id == job_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        owner_id: str,
        state: JobState | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[Job], int]:
        """
        List jobs for an owner with optional filtering.

        Args:
            owner_id: The owner identifier.
            state: Optional state filter.
            limit: Maximum number of jobs to return.
            offset: Offset for pagination.

        Returns:
            Tuple of (jobs, total_count).
        """
        base_filter = Job.owner_id == owner_id
        if state is not None:
            base_filter = and_(base_filter, Job.state == state)

        count_stmt = select(func.count()).select_from(Job).where(base_filter)
        count_result = await self._session.execute(count_stmt)
        total = count_result.scalar() or 0

        stmt = (
            select(Job)
            .where(base_filter)
            .order_by(Job.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        jobs = result.scalars().all()

        return jobs, total

    async def cancel_job(self, job_id: UUID) -> bool:
        """
        Cancel a job that has not been claimed yet.

        Args:
            job_id: The job UUID.

        Returns:
            True if the job moved to CANCELED, False if it was not pending.
        """
        stmt = (
            update(Job)
            .where(and_(Job.id == job_id, Job.state == JobState.PENDING))
            .values(state=JobState.CANCELED, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def get_runnable_groups(self, now: datetime | None = None) -> list[tuple[str, str]]:
        """
        Find every (owner, job type) pair with at least one eligible job.

        Args:
            now: Reference time for the backoff window.

        Returns:
            List of (owner_id, job_type) tuples.
        """
        now = now or utcnow()
        stmt = (
            select(Job.owner_id, Job.job_type)
            .where(_eligible_filter(now))
            .group_by(Job.owner_id, Job.job_type)
        )
        result = await self._session.execute(stmt)
        return [(row.owner_id, row.job_type) for row in result.all()]

    async def count_running(self, owner_id: str, job_type: str) -> int:
        """
        Count the running jobs of one (owner, job type) pair.

        Args:
            owner_id: The owner identifier.
            job_type: The job type.

        Returns:
            Number of jobs currently in RUNNING.
        """
        stmt = select(func.count()).select_from(Job).where(
            and_(
                Job.owner_id == owner_id,
                Job.job_type == job_type,
                Job.state == JobState.RUNNING,
            )
        )
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def try_lock_group(self, owner_id: str, job_type: str) -> bool:
        """
        Take the per (owner, job type) dispatch lock for this transaction.

        Row locks alone cannot keep two dispatchers from both counting the
        same running jobs and each claiming up to the limit, so the count
        and the claim of a group run under this lock. On PostgreSQL it is a
        transaction scoped advisory lock and is never waited on. SQLite has
        a single writer, so there the write lock is taken up front instead.

        Args:
            owner_id: The owner identifier.
            job_type: The job type.

        Returns:
            False if another transaction holds the group.
        """
        if self._session.get_bind().dialect.name == "postgresql":
            key = func.hashtext(f"{owner_id}:{job_type}")
            result = await self._session.execute(select(func.pg_try_advisory_xact_lock(key)))
            return bool(result.scalar())

        await self._session.execute(
            update(Job)
            .where(false())
            .values(updated_at=Job.updated_at)
            .execution_options(synchronize_session=False)
        )
        return True

    async def claim_jobs(
        self,
        owner_id: str,
        job_type: str,
        limit: int,
        now: datetime | None = None,
    ) -> list[Job]:
        """
        Claim up to ``limit`` eligible jobs, oldest first, and mark them running.

        Candidate rows are locked with FOR UPDATE SKIP LOCKED so that
        concurrent dispatchers never claim the same job; rows another
        transaction already holds are skipped rather than waited on.

        Args:
            owner_id: The owner identifier.
            job_type: The job type.
            limit: Maximum number of jobs to claim.
            now: Lease timestamp to stamp on the claimed jobs.

        Returns:
            The claimed jobs, oldest created first.
        """
        if limit <= 0:
            return []

        now = now or utcnow()
        candidates = (
            select(Job.id)
            .where(
                and_(
                    Job.owner_id == owner_id,
                    Job.job_type == job_type,
                    _eligible_filter(now),
                )
            )
            .order_by(Job.created_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self._session.execute(candidates)
        job_ids = list(result.scalars().all())
        if not job_ids:
            return []

        stmt = (
            update(Job)
            .where(and_(Job.id.in_(job_ids), Job.state == JobState.PENDING))
            .values(
                state=JobState.RUNNING,
                locked_at=now,
                last_run_at=now,
                updated_at=now,
            )
            .returning(Job)
            .execution_options(synchronize_session="fetch")
        )
        result = await self._session.execute(stmt)
        jobs = sorted(result.scalars().all(), key=lambda job: job.created_at)

        if jobs:
            logger.info(
                f"Claimed {len(jobs)} jobs",
                extra={"owner_id": owner_id, "job_type": job_type, "job_count": len(jobs)},
            )

        return jobs

    async def complete_job(self, job_id: UUID) -> Job | None:
        """
        Mark a running job as successfully completed.

        Args:
            job_id: The job UUID.

        Returns:
            Updated Job or None if the job was not running.
        """
        stmt = (
            update(Job)
            .where(and_(Job.id == job_id, Job.state == JobState.RUNNING))
            .values(
                state=JobState.COMPLETED,
                locked_at=None,
                updated_at=utcnow(),
            )
            .returning(Job)
            .execution_options(synchronize_session="fetch")
        )
        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job:
            logger.info("Job completed successfully", extra={"job_id": str(job_id)})

        return job

    async def mark_failed(self, job_id: UUID) -> Job | None:
        """
        Move a running job to the terminal FAILED state.

        Args:
            job_id: The job UUID.

        Returns:
            Updated Job or None if the job was not running.
        """
        stmt = (
            update(Job)
            .where(and_(Job.id == job_id, Job.state == JobState.RUNNING))
            .values(
                state=JobState.FAILED,
                locked_at=None,
                updated_at=utcnow(),
            )
            .returning(Job)
            .execution_options(synchronize_session="fetch")
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def schedule_retry(
        self,
        job_id: UUID,
        retries: int,
        next_run_at: datetime,
    ) -> Job | None:
        """
        Return a running job to PENDING with a new retry count and backoff.

        Args:
            job_id: The job UUID.
            retries: The new retry count.
            next_run_at: Earliest time the job may be claimed again.

        Returns:
            Updated Job or None if the job was not running.
        """
        stmt = (
            update(Job)
            .where(and_(Job.id == job_id, Job.state == JobState.RUNNING))
            .values(
                state=JobState.PENDING,
                retries=retries,
                next_run_at=next_run_at,
                locked_at=None,
                updated_at=utcnow(),
            )
            .returning(Job)
            .execution_options(synchronize_session="fetch")
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def reset_stuck_jobs(self, older_than: datetime) -> list[Job]:
        """
        Return running jobs whose lease predates ``older_than`` to PENDING.

        The retry count is left untouched: a lost response is not a failure
        reported by the worker.

        Args:
            older_than: Leases taken before this instant are considered expired.

        Returns:
            The jobs that were reset.
        """
        stmt = (
            update(Job)
            .where(
                and_(
                    Job.state == JobState.RUNNING,
                    Job.locked_at < older_than,
                )
            )
            .values(
                state=JobState.PENDING,
                locked_at=None,
                updated_at=utcnow(),
            )
            .returning(Job)
            .execution_options(synchronize_session="fetch")
        )
        result = await self._session.execute(stmt)
        jobs = list(result.scalars().all())

        if jobs:
            logger.info(f"Reset {len(jobs)} jobs with expired leases")

        return jobs

    async def get_state_counts(self, owner_id: str | None = None) -> dict[str, int]:
        """
        Get job counts by state.

        Args:
            owner_id: Optional owner filter.

        Returns:
            Dictionary of state -> count.
        """
        stmt = select(Job.state, func.count()).group_by(Job.state)
        if owner_id is not None:
            stmt = stmt.where(Job.owner_id == owner_id)

        result = await self._session.execute(stmt)
        return {JobState(state).value: count for state, count in result.all()}


class JobConfigRepository:
    """Repository for per job type scheduling configuration."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_config(self, job_type: str) -> JobConfig | None:
        """Get the configuration row of a job type, if any."""
        return await self._session.get(JobConfig, job_type)

    async def list_configs(self) -> Sequence[JobConfig]:
        """List all job type configurations."""
        result = await self._session.execute(select(JobConfig).order_by(JobConfig.job_type))
        return result.scalars().all()

    async def upsert_config(
        self,
        job_type: str,
        enabled: bool,
        concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
    ) -> JobConfig:
        """
        Create or replace the configuration of a job type.

        Args:
            job_type: The job type.
            enabled: Whether jobs of this type may be dispatched.
            concurrency_limit: Running jobs allowed per owner.

        Returns:
            The stored JobConfig.
        """
        config = await self.get_config(job_type)
        if config is None:
            config = JobConfig(job_type=job_type)
            self._session.add(config)
        config.enabled = enabled
        config.concurrency_limit = concurrency_limit
        await self._session.flush()

        logger.info(
            "Job type configured",
            extra={
                "job_type": job_type,
                "enabled": enabled,
                "concurrency_limit": concurrency_limit,
            },
        )
        return config


class ResponseRepository:
    """
    Repository over the transport's inbound response backlog.

    Each row is consumed by at most one correlator: rows are claimed one at
    a time with FOR UPDATE SKIP LOCKED inside the transaction that also
    applies the job transition.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add_response(
        self,
        status_code: int | None,
        headers: dict[str, str] | None,
        content: str | None,
        error_msg: str | None = None,
    ) -> HttpResponse:
        """Append a finished request to the backlog."""
        response = HttpResponse(
            status_code=status_code,
            headers=headers,
            content=content,
            error_msg=error_msg,
            created_at=utcnow(),
        )
        self._session.add(response)
        await self._session.flush()
        return response

    async def list_pending_ids(self, limit: int = 100, after_id: int | None = None) -> list[int]:
        """
        List backlog row ids, oldest first, without locking them.

        Transport failures are skipped: they carry no headers and can never
        be attributed to a job.

        Args:
            limit: Maximum number of ids to return.
            after_id: Only return ids greater than this one.
        """
        stmt = select(HttpResponse.id).where(HttpResponse.error_msg.is_(None))
        if after_id is not None:
            stmt = stmt.where(HttpResponse.id > after_id)
        stmt = stmt.order_by(HttpResponse.id).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def claim_response(self, response_id: int) -> HttpResponse | None:
        """
        Lock one backlog row for exclusive handling.

        Returns:
            The row, or None if another transaction holds it or it is gone.
        """
        stmt = (
            select(HttpResponse)
            .where(HttpResponse.id == response_id)
            .with_for_update(skip_locked=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def delete_response(self, response_id: int) -> None:
        """Remove a consumed row from the backlog."""
        await self._session.execute(
            delete(HttpResponse)
            .where(HttpResponse.id == response_id)
            .execution_options(synchronize_session=False)
        )

    async def prune_responses(self, older_than: datetime) -> int:
        """
        Evict backlog rows nobody consumed before ``older_than``.

        Returns:
            Number of rows removed.
        """
        result = await self._session.execute(
            delete(HttpResponse)
            .where(HttpResponse.created_at < older_than)
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount
        if count > 0:
            logger.info(f"Pruned {count} unclaimed responses")
        return count
