"""
Enqueue API: the only synchronous entry points into the engine.
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from jobrelay.audit import AuditLog
from jobrelay.constants import DEFAULT_MAX_RETRIES, LOG_JOB_CANCELED, LOG_JOB_CREATED, SPAN_SUBMIT_JOB
from jobrelay.db.repository import JobRepository
from jobrelay.exceptions import JobValidationError
from jobrelay.observability.metrics import get_metrics
from jobrelay.observability.tracing import get_tracer, set_job_attributes

logger = logging.getLogger(__name__)


class EnqueueService:
    """
    Creates and cancels jobs.

    Both operations only touch the caller's session; committing is left to
    the session owner (request dependency or ``get_session_context``).
    """

    def __init__(self, session: AsyncSession):
        self._repo = JobRepository(session)
        self._audit = AuditLog(session)

    async def submit(
        self,
        owner_id: str,
        job_type: str,
        payload: Any,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> UUID:
        """
        Queue a new job.

        Args:
            owner_id: The owner identifier.
            job_type: Job type, also the name of the worker endpoint.
            payload: Opaque payload forwarded to the worker.
            max_retries: Maximum number of attempts.

        Returns:
            The new job id.

        Raises:
            JobValidationError: If the job type is blank or max_retries < 1.
        """
        if job_type is None or not job_type.strip():
            raise JobValidationError("job_type", "must not be blank")
        if max_retries < 1:
            raise JobValidationError("max_retries", "must be at least 1")

        with get_tracer().start_as_current_span(SPAN_SUBMIT_JOB) as span:
            job = await self._repo.create_job(
                owner_id=owner_id,
                job_type=job_type,
                payload=payload,
                max_retries=max_retries,
            )
            self._audit.record(job.id, LOG_JOB_CREATED)
            set_job_attributes(span, job)

        get_metrics().record_job_submitted(job_type)
        return job.id

    async def cancel(self, job_id: UUID) -> bool:
        """
        Cancel a job that has not been dispatched yet.

        Canceling a running or finished job is a no-op, not an error.

        Args:
            job_id: The job UUID.

        Returns:
            True if the job was canceled by this call.
        """
        canceled = await self._repo.cancel_job(job_id)
        if canceled:
            self._audit.record(job_id, LOG_JOB_CANCELED)
            logger.info("Job canceled", extra={"job_id": str(job_id)})
        else:
            logger.debug("Cancel ignored, job not pending", extra={"job_id": str(job_id)})
        return canceled
