"""
Dispatcher: claims eligible jobs and fires them at their worker endpoints.

Each tick walks every (owner, job type) group that has eligible pending
jobs, claims as many as the group's concurrency limit allows, and submits
one request per claimed job to the transport without waiting for it.
"""

import logging

from jobrelay.audit import AuditLog
from jobrelay.clock import utcnow
from jobrelay.config import get_settings
from jobrelay.constants import (
    DEFAULT_CONCURRENCY_LIMIT,
    LOG_JOB_STARTED,
    SPAN_DISPATCH_GROUP,
    SPAN_DISPATCH_TICK,
)
from jobrelay.db import get_session_context
from jobrelay.db.models import Job
from jobrelay.db.repository import JobConfigRepository, JobRepository
from jobrelay.observability.metrics import get_metrics
from jobrelay.observability.tracing import get_tracer
from jobrelay.scheduler.base import PeriodicTask
from jobrelay.transport.http import Transport, build_worker_request
from jobrelay.types.job import DispatchGroup

logger = logging.getLogger(__name__)


class Dispatcher(PeriodicTask):
    """
    Periodic dispatch of pending jobs.

    Features:
    - Per (owner, job type) concurrency cap from the job type configuration
    - Missing or disabled configuration suppresses the whole group
    - Oldest created first within a group
    - Per group dispatch lock around the count and the claim
    - FOR UPDATE SKIP LOCKED claims, safe with several dispatchers running
    - Requests are submitted only after the claim is committed
    """

    name = "Dispatcher"

    def __init__(
        self,
        transport: Transport,
        interval_seconds: float | None = None,
        timeout_seconds: float | None = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            transport: Fire-and-forget transport to the worker endpoints.
            interval_seconds: Seconds between ticks.
            timeout_seconds: Per-request timeout for worker calls.
        """
        settings = get_settings()
        super().__init__(interval_seconds or settings.dispatch_interval_seconds)
        self._transport = transport
        self._timeout = timeout_seconds or settings.dispatch_timeout_seconds
        self._metrics = get_metrics()

    async def run_once(self) -> int:
        """
        Run one dispatch tick.

        Returns:
            Number of jobs dispatched.
        """
        with get_tracer().start_as_current_span(SPAN_DISPATCH_TICK) as span:
            async with get_session_context() as session:
                groups = await JobRepository(session).get_runnable_groups(utcnow())

            dispatched = 0
            for owner_id, job_type in groups:
                try:
                    dispatched += await self._dispatch_group(owner_id, job_type)
                except Exception:
                    logger.exception(
                        "Failed to dispatch group",
                        extra={"owner_id": owner_id, "job_type": job_type},
                    )

            span.set_attribute("groups", len(groups))
            span.set_attribute("dispatched", dispatched)

        if dispatched:
            logger.info(f"Dispatched {dispatched} jobs across {len(groups)} groups")

        return dispatched

    async def _dispatch_group(self, owner_id: str, job_type: str) -> int:
        """
        Claim and fire the jobs of one group in its own transaction.

        Returns:
            Number of jobs dispatched.
        """
        with get_tracer().start_as_current_span(SPAN_DISPATCH_GROUP) as span:
            span.set_attribute("owner_id", owner_id)
            span.set_attribute("job_type", job_type)

            async with get_session_context() as session:
                config = await JobConfigRepository(session).get_config(job_type)
                if config is None or not config.enabled:
                    logger.info(
                        "Job type disabled via job config",
                        extra={
                            "job_type": job_type,
                            "configured": config is not None,
                        },
                    )
                    return 0

                repo = JobRepository(session)
                if not await repo.try_lock_group(owner_id, job_type):
                    logger.debug(
                        "Group held by another dispatcher",
                        extra={"owner_id": owner_id, "job_type": job_type},
                    )
                    return 0

                group = DispatchGroup(
                    owner_id=owner_id,
                    job_type=job_type,
                    concurrency_limit=config.concurrency_limit or DEFAULT_CONCURRENCY_LIMIT,
                    running=await repo.count_running(owner_id, job_type),
                )
                if group.available_slots <= 0:
                    logger.debug(
                        "Concurrency limit reached",
                        extra={
                            "group": group.key,
                            "running": group.running,
                            "limit": group.concurrency_limit,
                        },
                    )
                    return 0

                jobs = await repo.claim_jobs(
                    owner_id,
                    job_type,
                    limit=group.available_slots,
                    now=utcnow(),
                )
                audit = AuditLog(session)
                for job in jobs:
                    audit.record(job.id, LOG_JOB_STARTED)

            # Claims are committed; a crash from here on is recovered by lease expiry
            for job in jobs:
                self._fire(job)

            span.set_attribute("claimed", len(jobs))

        if jobs:
            self._metrics.record_jobs_dispatched(job_type, len(jobs))
        return len(jobs)

    def _fire(self, job: Job) -> None:
        """Submit the worker request of one claimed job."""
        try:
            self._transport.submit(build_worker_request(job, self._timeout))
        except Exception:
            logger.exception(
                "Failed to submit worker request",
                extra={"job_id": str(job.id), "job_type": job.job_type},
            )
            return

        logger.info(
            "Job dispatched",
            extra={"job_id": str(job.id), "job_type": job.job_type, "owner_id": job.owner_id},
        )
