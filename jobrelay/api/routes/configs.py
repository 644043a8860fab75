"""
Job type configuration routes.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from jobrelay.api.auth import CurrentUser
from jobrelay.constants import API_V1_PREFIX
from jobrelay.db import get_async_session
from jobrelay.db.repository import JobConfigRepository
from jobrelay.types.api import JobConfigRequest, JobConfigResponse

router = APIRouter(prefix=f"{API_V1_PREFIX}/job-configs", tags=["Job configs"])


@router.get(
    "",
    response_model=list[JobConfigResponse],
    summary="List job type configurations",
)
async def list_job_configs(
    current_user: CurrentUser,
    session: AsyncSession = Depends(get_async_session),
) -> list[JobConfigResponse]:
    """List every configured job type."""
    configs = await JobConfigRepository(session).list_configs()
    return [JobConfigResponse.model_validate(config) for config in configs]


@router.get(
    "/{job_type}",
    response_model=JobConfigResponse,
    summary="Get a job type configuration",
)
async def get_job_config(
    job_type: str,
    current_user: CurrentUser,
    session: AsyncSession = Depends(get_async_session),
) -> JobConfigResponse:
    """
    Get the configuration of one job type.

    Raises:
        HTTPException: If the job type has no configuration, in which case
            its jobs are never dispatched.
    """
    config = await JobConfigRepository(session).get_config(job_type)
    if config is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job type not configured",
        )
    return JobConfigResponse.model_validate(config)


@router.put(
    "/{job_type}",
    response_model=JobConfigResponse,
    summary="Configure a job type",
    description="Enable or disable a job type and set its per-owner concurrency limit.",
)
async def put_job_config(
    job_type: str,
    request: JobConfigRequest,
    current_user: CurrentUser,
    session: AsyncSession = Depends(get_async_session),
) -> JobConfigResponse:
    """Create or replace the configuration of a job type."""
    config = await JobConfigRepository(session).upsert_config(
        job_type=job_type,
        enabled=request.enabled,
        concurrency_limit=request.concurrency_limit,
    )
    await session.commit()
    return JobConfigResponse.model_validate(config)
