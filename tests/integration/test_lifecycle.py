"""
End-to-end tests: enqueue, dispatch over HTTP, correlate.
"""

from datetime import timedelta

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from jobrelay.audit import AuditLog
from jobrelay.clock import as_utc, utcnow
from jobrelay.constants import (
    LOG_JOB_COMPLETED,
    LOG_JOB_CREATED,
    LOG_JOB_RETRIED,
    LOG_JOB_STARTED,
    JobState,
)
from jobrelay.db.models import Job
from jobrelay.enqueue import EnqueueService
from jobrelay.scheduler.correlator import Correlator
from jobrelay.scheduler.dispatcher import Dispatcher
from jobrelay.scheduler.reclaimer import Reclaimer


async def _cycle(dispatcher: Dispatcher, transport) -> int:
    """One dispatch tick, wait for the worker, one correlation tick."""
    dispatched = await dispatcher.run_once()
    await transport.wait_idle()
    await Correlator().run_once()
    return dispatched


async def _make_due(session: AsyncSession, job_id) -> None:
    """Pretend the backoff window has elapsed."""
    await session.execute(
        update(Job)
        .where(Job.id == job_id)
        .values(next_run_at=utcnow() - timedelta(seconds=1))
    )
    await session.commit()


class TestJobLifecycle:
    """Full job lifecycles against a fake worker endpoint."""

    async def test_successful_job(
        self, db_session, configure, refresh, fake_worker, http_transport
    ):
        """Test pending to running to completed."""
        await configure("email")
        job_id = await EnqueueService(db_session).submit(
            "owner-1", "email", {"to": "someone@example.com"}
        )
        await db_session.commit()

        assert await _cycle(Dispatcher(http_transport), http_transport) == 1

        (request,) = fake_worker.requests
        assert request.url.path.endswith("/email")
        assert request.headers["X-Correlation-ID"] == str(job_id)
        assert request.headers["Authorization"].startswith("Bearer ")

        job = await refresh(job_id)
        assert job.state == JobState.COMPLETED
        assert job.locked_at is None

        entries = await AuditLog(db_session).list_for_job(job_id)
        assert [entry.message for entry in entries] == [
            LOG_JOB_CREATED,
            LOG_JOB_STARTED,
            LOG_JOB_COMPLETED,
        ]

    async def test_failing_job_is_retried_then_failed(
        self, db_session, configure, refresh, fake_worker, http_transport
    ):
        """Test three failures with max_retries=3: pending, pending, failed."""
        fake_worker.default_status = 500
        await configure("email")
        job_id = await EnqueueService(db_session).submit("owner-1", "email", None, max_retries=3)
        await db_session.commit()
        dispatcher = Dispatcher(http_transport)

        started = utcnow()
        await _cycle(dispatcher, http_transport)
        job = await refresh(job_id)
        assert (job.state, job.retries) == (JobState.PENDING, 1)
        first_retry_at = as_utc(job.next_run_at)
        assert timedelta(minutes=5) <= first_retry_at - started < timedelta(minutes=6)

        # Not eligible before the backoff elapses
        assert await dispatcher.run_once() == 0

        await _make_due(db_session, job_id)
        started = utcnow()
        await _cycle(dispatcher, http_transport)
        job = await refresh(job_id)
        assert (job.state, job.retries) == (JobState.PENDING, 2)
        second_retry_at = as_utc(job.next_run_at)
        assert timedelta(minutes=10) <= second_retry_at - started < timedelta(minutes=11)
        assert second_retry_at > first_retry_at

        await _make_due(db_session, job_id)
        await _cycle(dispatcher, http_transport)
        job = await refresh(job_id)
        assert job.state == JobState.FAILED
        assert job.locked_at is None

        assert len(fake_worker.requests) == 3
        entries = await AuditLog(db_session).list_for_job(job_id)
        assert [entry.message for entry in entries].count(LOG_JOB_RETRIED) == 3

    async def test_lost_response_is_recovered_by_lease_expiry(
        self, db_session, configure, refresh, fake_worker, http_transport
    ):
        """Test that a response missing its token leaves the job to the reclaimer."""
        fake_worker.echo_correlation_id = False
        await configure("email")
        job_id = await EnqueueService(db_session).submit("owner-1", "email", None)
        await db_session.commit()
        dispatcher = Dispatcher(http_transport)

        await _cycle(dispatcher, http_transport)
        assert (await refresh(job_id)).state == JobState.RUNNING

        await db_session.execute(
            update(Job)
            .where(Job.id == job_id)
            .values(locked_at=utcnow() - timedelta(hours=1))
        )
        await db_session.commit()
        assert await Reclaimer(lease_timeout_seconds=480).run_once() == 1

        fake_worker.echo_correlation_id = True
        await _cycle(dispatcher, http_transport)

        job = await refresh(job_id)
        assert job.state == JobState.COMPLETED
        assert job.retries == 0
        assert len(fake_worker.requests) == 2
