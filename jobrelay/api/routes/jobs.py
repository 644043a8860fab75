"""
Job management routes: the HTTP face of the enqueue API and the audit trail.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from jobrelay.api.auth import CurrentUser
from jobrelay.audit import AuditLog
from jobrelay.constants import API_V1_PREFIX, JobState
from jobrelay.db import get_async_session
from jobrelay.db.models import Job
from jobrelay.db.repository import JobRepository
from jobrelay.enqueue import EnqueueService
from jobrelay.types.api import (
    CancelJobResponse,
    CreateJobRequest,
    CreateJobResponse,
    JobListResponse,
    JobLogResponse,
    JobResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/jobs", tags=["Jobs"])


async def _get_owned_job(repo: JobRepository, job_id: UUID, owner_id: str) -> Job:
    """Load a job, enforcing that the caller owns it."""
    job = await repo.get_job(job_id)

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    if job.owner_id != owner_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied",
        )

    return job


@router.post(
    "",
    response_model=CreateJobResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Queue a job",
    description="Queue a new job for asynchronous execution by its worker endpoint.",
)
async def create_job(
    request: CreateJobRequest,
    current_user: CurrentUser,
    session: AsyncSession = Depends(get_async_session),
) -> CreateJobResponse:
    """
    Queue a new job owned by the caller.

    The outcome of the job is never returned here: it is observable only
    through the job's state and audit trail.

    Args:
        request: Job creation request.
        current_user: Authenticated caller context.
        session: Database session.

    Returns:
        CreateJobResponse with the new job id.
    """
    job_id = await EnqueueService(session).submit(
        owner_id=current_user.owner_id,
        job_type=request.job_type,
        payload=request.payload,
        max_retries=request.max_retries,
    )
    await session.commit()

    return CreateJobResponse(id=job_id, state=JobState.PENDING)


@router.post(
    "/{job_id}/cancel",
    response_model=CancelJobResponse,
    summary="Cancel a job",
    description="Cancel a job that has not been dispatched yet. No-op otherwise.",
)
async def cancel_job(
    job_id: UUID,
    current_user: CurrentUser,
    session: AsyncSession = Depends(get_async_session),
) -> CancelJobResponse:
    """
    Cancel a pending job.

    Args:
        job_id: The job UUID.
        current_user: Authenticated caller context.
        session: Database session.

    Returns:
        CancelJobResponse telling whether this call canceled the job.
    """
    repo = JobRepository(session)
    await _get_owned_job(repo, job_id, current_user.owner_id)

    canceled = await EnqueueService(session).cancel(job_id)
    await session.commit()

    job = await repo.get_job(job_id)
    return CancelJobResponse(id=job_id, state=job.state, canceled=canceled)


@router.get(
    "/stats/summary",
    summary="Get job statistics",
    description="Get job counts by state for the caller.",
)
async def get_job_stats(
    current_user: CurrentUser,
    session: AsyncSession = Depends(get_async_session),
) -> dict:
    """
    Get job statistics for the current owner.

    Args:
        current_user: Authenticated caller context.
        session: Database session.

    Returns:
        Dictionary of state -> count.
    """
    repo = JobRepository(session)
    return {"stats": await repo.get_state_counts(owner_id=current_user.owner_id)}


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Get job details",
    description="Get detailed information about a specific job.",
)
async def get_job(
    job_id: UUID,
    current_user: CurrentUser,
    session: AsyncSession = Depends(get_async_session),
) -> JobResponse:
    """
    Get job details by ID.

    Raises:
        HTTPException: If job not found or not owned by the caller.
    """
    job = await _get_owned_job(JobRepository(session), job_id, current_user.owner_id)
    return JobResponse.model_validate(job)


@router.get(
    "/{job_id}/logs",
    response_model=list[JobLogResponse],
    summary="Get job audit trail",
    description="List the lifecycle events recorded for a job, oldest first.",
)
async def get_job_logs(
    job_id: UUID,
    current_user: CurrentUser,
    session: AsyncSession = Depends(get_async_session),
) -> list[JobLogResponse]:
    """
    Get the audit trail of a job.

    Raises:
        HTTPException: If job not found or not owned by the caller.
    """
    await _get_owned_job(JobRepository(session), job_id, current_user.owner_id)
    entries = await AuditLog(session).list_for_job(job_id)
    return [JobLogResponse.model_validate(entry) for entry in entries]


@router.get(
    "",
    response_model=JobListResponse,
    summary="List jobs",
    description="List the caller's jobs with optional state filtering.",
)
async def list_jobs(
    current_user: CurrentUser,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    state: JobState | None = Query(default=None),
    session: AsyncSession = Depends(get_async_session),
) -> JobListResponse:
    """
    List jobs for the current owner.

    Args:
        current_user: Authenticated caller context.
        page: Page number (1-indexed).
        page_size: Number of items per page.
        state: Optional state filter.
        session: Database session.

    Returns:
        JobListResponse with paginated jobs.
    """
    repo = JobRepository(session)
    offset = (page - 1) * page_size

    jobs, total = await repo.list_jobs(
        owner_id=current_user.owner_id,
        state=state,
        limit=page_size,
        offset=offset,
    )

    return JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=total,
        page=page,
        page_size=page_size,
        has_next=(page * page_size) < total,
    )
