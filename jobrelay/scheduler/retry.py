"""
Retry engine: decides between another attempt and permanent failure.
"""

import logging
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from jobrelay.clock import utcnow
from jobrelay.config import get_settings
from jobrelay.db.models import Job
from jobrelay.db.repository import JobRepository
from jobrelay.observability.metrics import get_metrics

logger = logging.getLogger(__name__)


def compute_backoff(retries: int, base: timedelta | None = None) -> timedelta:
    """
    Delay before the next attempt: ``base * 2 ** retries``.

    With the default 5 minute base the delays are 5, 10, 20, 40... minutes
    for retries 0, 1, 2, 3...

    Args:
        retries: Retry count before this failure is counted.
        base: Delay for the first retry.

    Returns:
        The backoff delay.
    """
    if base is None:
        base = timedelta(seconds=get_settings().retry_base_delay_seconds)
    return base * (2 ** retries)


class RetryEngine:
    """Applies a failure to a running job."""

    def __init__(self, session: AsyncSession, base_delay: timedelta | None = None):
        self._repo = JobRepository(session)
        self._base_delay = base_delay

    def will_exhaust(self, job: Job) -> bool:
        """Check if one more failure makes the job permanently failed."""
        return job.retries + 1 >= job.max_retries

    async def fail_with_retry(self, job: Job) -> Job | None:
        """
        Record a failed attempt.

        If the job has attempts left it goes back to PENDING with its retry
        count incremented and ``next_run_at`` pushed out by the backoff;
        otherwise it becomes FAILED. The lease is cleared either way.

        Args:
            job: The running job, normally locked by the caller.

        Returns:
            The updated job, or None if it was no longer running.
        """
        retries = job.retries
        if self.will_exhaust(job):
            updated = await self._repo.mark_failed(job.id)
            if updated is not None:
                logger.warning(
                    f"Job failed permanently after {retries + 1} attempts",
                    extra={"job_id": str(job.id), "job_type": job.job_type},
                )
                get_metrics().record_job_resolved(job.job_type, updated.state.value)
            return updated

        delay = compute_backoff(retries, self._base_delay)
        updated = await self._repo.schedule_retry(
            job.id,
            retries=retries + 1,
            next_run_at=utcnow() + delay,
        )
        if updated is not None:
            logger.info(
                "Job scheduled for retry",
                extra={
                    "job_id": str(job.id),
                    "retries": retries + 1,
                    "delay_seconds": delay.total_seconds(),
                },
            )
            get_metrics().record_job_retried(job.job_type)
        return updated
