"""
Lease reclaimer for recovering jobs that never got a correlated response.

The reclaimer runs periodically to find running jobs whose lease is older
than the lease timeout and returns them to pending. This covers worker
crashes and transport failures, and ensures at-least-once delivery.
"""

import logging
from datetime import timedelta

from jobrelay.clock import utcnow
from jobrelay.config import get_settings
from jobrelay.constants import SPAN_RECLAIM_TICK
from jobrelay.db import get_session_context
from jobrelay.db.repository import JobRepository, ResponseRepository
from jobrelay.observability.metrics import get_metrics
from jobrelay.observability.tracing import get_tracer
from jobrelay.scheduler.base import PeriodicTask

logger = logging.getLogger(__name__)


class Reclaimer(PeriodicTask):
    """
    Lease reclaimer that recovers expired job leases.

    Runs periodically to:
    1. Find jobs in RUNNING state whose locked_at is older than the timeout
    2. Return them to PENDING with the lease cleared and retries unchanged
    3. Evict backlog responses nobody consumed within the same timeout
    """

    name = "Reclaimer"

    def __init__(
        self,
        interval_seconds: float | None = None,
        lease_timeout_seconds: int | None = None,
    ):
        """
        Initialize the reclaimer.

        Args:
            interval_seconds: Seconds between reclaimer runs.
            lease_timeout_seconds: Age after which a lease counts as expired.
        """
        settings = get_settings()
        super().__init__(interval_seconds or settings.reclaim_interval_seconds)
        self.lease_timeout = timedelta(
            seconds=lease_timeout_seconds or settings.lease_timeout_seconds
        )
        self._metrics = get_metrics()

        if self.lease_timeout.total_seconds() <= settings.dispatch_timeout_seconds:
            logger.warning(
                "Lease timeout does not exceed the dispatch timeout; "
                "jobs still in flight may be reclaimed and run twice",
                extra={
                    "lease_timeout_seconds": self.lease_timeout.total_seconds(),
                    "dispatch_timeout_seconds": settings.dispatch_timeout_seconds,
                },
            )

    async def run_once(self) -> int:
        """
        Reset expired leases and prune the response backlog.

        Returns:
            Number of jobs reset.
        """
        with get_tracer().start_as_current_span(SPAN_RECLAIM_TICK) as span:
            cutoff = utcnow() - self.lease_timeout

            async with get_session_context() as session:
                jobs = await JobRepository(session).reset_stuck_jobs(cutoff)
                pruned = await ResponseRepository(session).prune_responses(cutoff)

            for job in jobs:
                logger.warning(
                    "Lease expired, job returned to pending",
                    extra={"job_id": str(job.id), "job_type": job.job_type},
                )

            if jobs:
                self._metrics.record_leases_reclaimed(len(jobs))
                logger.info(f"Recovered {len(jobs)} expired leases")

            span.set_attribute("reclaimed", len(jobs))
            span.set_attribute("pruned", pruned)

        return len(jobs)
