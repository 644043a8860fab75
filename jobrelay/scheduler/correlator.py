"""
Correlator: matches worker responses in the backlog back to their jobs.

Each response is handled in its own transaction: the backlog row is
claimed with SKIP LOCKED, the job row is locked, and the resulting state
transition commits together with the removal of the response.
"""

import logging
from uuid import UUID

from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from jobrelay.audit import AuditLog
from jobrelay.config import get_settings
from jobrelay.constants import (
    LOG_JOB_COMPLETED,
    LOG_JOB_RETRIED,
    SPAN_CORRELATE_RESPONSE,
    SPAN_CORRELATE_TICK,
    SUCCESS_STATUS_CODES,
    JobState,
)
from jobrelay.db import get_session_context
from jobrelay.db.repository import JobRepository, ResponseRepository
from jobrelay.observability.metrics import get_metrics
from jobrelay.observability.tracing import get_tracer, set_job_attributes
from jobrelay.scheduler.base import PeriodicTask
from jobrelay.scheduler.retry import RetryEngine
from jobrelay.transport.http import get_correlation_id, is_job_response, normalize_headers

logger = logging.getLogger(__name__)

# Outcomes of handling one backlog row
OUTCOME_SKIPPED = "skipped"
OUTCOME_FOREIGN = "foreign"
OUTCOME_UNATTRIBUTED = "unattributed"
OUTCOME_UNKNOWN_JOB = "unknown_job"
OUTCOME_STALE = "stale"
OUTCOME_COMPLETED = "completed"
OUTCOME_FAILED = "failed"

CONSUMED_OUTCOMES = frozenset(
    {OUTCOME_UNATTRIBUTED, OUTCOME_UNKNOWN_JOB, OUTCOME_STALE, OUTCOME_COMPLETED, OUTCOME_FAILED}
)


class Correlator(PeriodicTask):
    """
    Periodic drain of the transport's response backlog.

    Responses without the job marker are not ours and are left in place.
    Marked responses are removed exactly once, whether or not they can be
    attributed to a job.
    """

    name = "Correlator"

    def __init__(
        self,
        interval_seconds: float | None = None,
        batch_size: int | None = None,
    ):
        """
        Initialize the correlator.

        Args:
            interval_seconds: Seconds between ticks.
            batch_size: Maximum backlog rows consumed per tick.
        """
        settings = get_settings()
        super().__init__(interval_seconds or settings.correlate_interval_seconds)
        self.batch_size = batch_size or settings.correlate_batch_size
        self._metrics = get_metrics()

    async def run_once(self) -> int:
        """
        Run one correlation tick.

        The backlog is walked by id until ``batch_size`` rows are consumed or
        it is exhausted, so rows left in place never hide the ones behind them.

        Returns:
            Number of responses consumed from the backlog.
        """
        with get_tracer().start_as_current_span(SPAN_CORRELATE_TICK) as span:
            consumed = 0
            examined = 0
            last_seen: int | None = None

            while consumed < self.batch_size:
                async with get_session_context() as session:
                    response_ids = await ResponseRepository(session).list_pending_ids(
                        self.batch_size - consumed, after_id=last_seen
                    )
                if not response_ids:
                    break

                for response_id in response_ids:
                    last_seen = response_id
                    examined += 1
                    if await self._handle_response(response_id) in CONSUMED_OUTCOMES:
                        consumed += 1

            span.set_attribute("examined", examined)
            span.set_attribute("consumed", consumed)

        return consumed

    async def _handle_response(self, response_id: int) -> str | None:
        """
        Process one backlog row in its own transaction.

        Returns:
            The outcome label, or None if processing raised.
        """
        try:
            with get_tracer().start_as_current_span(SPAN_CORRELATE_RESPONSE) as item_span:
                item_span.set_attribute("response_id", response_id)
                async with get_session_context() as session:
                    outcome = await self._process_response(session, response_id)
                item_span.set_attribute("outcome", outcome)
        except Exception:
            logger.exception(
                "Failed to process response",
                extra={"response_id": response_id},
            )
            return None

        if outcome != OUTCOME_SKIPPED:
            self._metrics.record_response_processed(outcome)
        return outcome

    async def _process_response(self, session: AsyncSession, response_id: int) -> str:
        """
        Handle one backlog row inside the caller's transaction.

        Returns:
            The outcome label.
        """
        responses = ResponseRepository(session)
        response = await responses.claim_response(response_id)
        if response is None:
            # Held by another correlator or already consumed
            return OUTCOME_SKIPPED

        headers = normalize_headers(response.headers)
        if not is_job_response(headers):
            return OUTCOME_FOREIGN

        await responses.delete_response(response_id)

        correlation_id = get_correlation_id(headers)
        if not correlation_id:
            logger.error(
                "job run failed due to a missing X-Correlation-ID header. "
                "This is a permanent failure and will not be retried.",
                extra={"response_id": response_id, "status_code": response.status_code},
            )
            return OUTCOME_UNATTRIBUTED

        try:
            job_id = UUID(correlation_id)
        except ValueError:
            logger.warning(
                "Dropping response with malformed correlation id",
                extra={"response_id": response_id, "correlation_id": correlation_id},
            )
            return OUTCOME_UNKNOWN_JOB

        jobs = JobRepository(session)
        job = await jobs.get_job_for_update(job_id)
        if job is None:
            logger.debug(
                "Dropping response for unknown job",
                extra={"response_id": response_id, "job_id": correlation_id},
            )
            return OUTCOME_UNKNOWN_JOB

        set_job_attributes(trace.get_current_span(), job)

        if job.state != JobState.RUNNING:
            # Reclaimed and redispatched, or already resolved
            logger.info(
                "Dropping response for job that is not running",
                extra={"job_id": str(job_id), "state": job.state.value},
            )
            return OUTCOME_STALE

        audit = AuditLog(session)
        if response.status_code in SUCCESS_STATUS_CODES:
            await jobs.complete_job(job_id)
            audit.record(job_id, LOG_JOB_COMPLETED)
            self._metrics.record_job_resolved(job.job_type, JobState.COMPLETED.value)
            return OUTCOME_COMPLETED

        logger.warning(
            "Worker reported failure",
            extra={"job_id": str(job_id), "status_code": response.status_code},
        )
        await RetryEngine(session).fail_with_retry(job)
        audit.record(job_id, LOG_JOB_RETRIED)
        return OUTCOME_FAILED
