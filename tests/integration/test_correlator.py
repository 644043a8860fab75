"""
Integration tests for the correlator.
"""

from datetime import timedelta
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from jobrelay.audit import AuditLog
from jobrelay.clock import as_utc, utcnow
from jobrelay.constants import LOG_JOB_COMPLETED, LOG_JOB_RETRIED, JobState
from jobrelay.db.models import Job
from jobrelay.db.repository import JobRepository, ResponseRepository
from jobrelay.scheduler import correlator as correlator_module
from jobrelay.scheduler.correlator import Correlator


async def _running_job(session: AsyncSession, job_type: str = "email", max_retries: int = 3) -> Job:
    repo = JobRepository(session)
    job = await repo.create_job(
        owner_id="owner-1", job_type=job_type, payload=None, max_retries=max_retries
    )
    await repo.claim_jobs("owner-1", job_type, limit=1)
    await session.commit()
    return job


async def _respond(session: AsyncSession, status_code: int | None, headers: dict | None) -> int:
    response = await ResponseRepository(session).add_response(status_code, headers, "")
    await session.commit()
    return response.id


def _job_headers(job_id) -> dict:
    return {"x-job": "true", "x-correlation-id": str(job_id)}


class TestCorrelator:
    """Tests for Correlator.run_once."""

    async def test_success_completes_job(self, db_session, refresh):
        """Test that a 2xx response completes the running job."""
        job = await _running_job(db_session)
        await _respond(db_session, 204, _job_headers(job.id))

        assert await Correlator().run_once() == 1

        job = await refresh(job.id)
        assert job.state == JobState.COMPLETED
        assert job.locked_at is None
        assert await ResponseRepository(db_session).list_pending_ids() == []

        entries = await AuditLog(db_session).list_for_job(job.id)
        assert entries[-1].message == LOG_JOB_COMPLETED

    async def test_header_names_are_case_insensitive(self, db_session, refresh):
        """Test that marker and token are found regardless of header case."""
        job = await _running_job(db_session)
        await _respond(db_session, 201, {"X-JOB": "true", "X-Correlation-Id": str(job.id)})

        assert await Correlator().run_once() == 1
        assert (await refresh(job.id)).state == JobState.COMPLETED

    async def test_failure_schedules_retry(self, db_session, refresh):
        """Test that an error status sends the job back with backoff."""
        job = await _running_job(db_session)
        await _respond(db_session, 500, _job_headers(job.id))
        before = utcnow()

        assert await Correlator().run_once() == 1

        job = await refresh(job.id)
        assert job.state == JobState.PENDING
        assert job.retries == 1
        assert job.locked_at is None
        assert as_utc(job.next_run_at) - before >= timedelta(minutes=5)

        entries = await AuditLog(db_session).list_for_job(job.id)
        assert entries[-1].message == LOG_JOB_RETRIED

    async def test_non_success_2xx_is_a_failure(self, db_session, refresh):
        """Test that only 200, 201 and 204 count as success."""
        job = await _running_job(db_session)
        await _respond(db_session, 202, _job_headers(job.id))

        await Correlator().run_once()

        assert (await refresh(job.id)).state == JobState.PENDING

    async def test_foreign_response_is_left_alone(self, db_session, refresh):
        """Test that responses without the job marker are not consumed."""
        job = await _running_job(db_session)
        response_id = await _respond(db_session, 200, {"x-correlation-id": str(job.id)})

        assert await Correlator().run_once() == 0

        assert await ResponseRepository(db_session).list_pending_ids() == [response_id]
        assert (await refresh(job.id)).state == JobState.RUNNING

    async def test_transport_error_row_is_left_alone(self, db_session, refresh):
        """Test that a row with no headers is never attributed."""
        job = await _running_job(db_session)
        await ResponseRepository(db_session).add_response(None, None, None, "timed out")
        await db_session.commit()

        assert await Correlator().run_once() == 0
        assert (await refresh(job.id)).state == JobState.RUNNING

    async def test_missing_correlation_id_is_dropped(self, db_session, refresh):
        """Test that a marked response without a token mutates no job."""
        job = await _running_job(db_session)
        await _respond(db_session, 500, {"x-job": "true"})

        assert await Correlator().run_once() == 1

        assert await ResponseRepository(db_session).list_pending_ids() == []
        job = await refresh(job.id)
        assert job.state == JobState.RUNNING
        assert job.retries == 0

    async def test_unknown_job_is_dropped(self, db_session):
        """Test that a token matching no job is consumed silently."""
        await _respond(db_session, 204, _job_headers(uuid4()))
        await _respond(db_session, 204, {"x-job": "true", "x-correlation-id": "not-a-uuid"})

        assert await Correlator().run_once() == 2
        assert await ResponseRepository(db_session).list_pending_ids() == []

    async def test_response_for_pending_job_is_stale(self, db_session, refresh):
        """Test that a late response does not touch a job that is no longer running."""
        repo = JobRepository(db_session)
        job = await repo.create_job(owner_id="owner-1", job_type="email", payload=None)
        await db_session.commit()
        await _respond(db_session, 204, _job_headers(job.id))

        assert await Correlator().run_once() == 1

        assert (await refresh(job.id)).state == JobState.PENDING
        assert await ResponseRepository(db_session).list_pending_ids() == []

    async def test_batch_size_limits_tick(self, db_session):
        """Test that one tick consumes at most batch_size rows."""
        for _ in range(3):
            await _respond(db_session, 204, _job_headers(uuid4()))

        assert await Correlator(batch_size=2).run_once() == 2
        assert len(await ResponseRepository(db_session).list_pending_ids()) == 1

    async def test_failing_response_does_not_block_batch(self, db_session, refresh, monkeypatch):
        """Test that an error on one response leaves it and processes the others."""
        failing = await _running_job(db_session, job_type="email")
        succeeding = await _running_job(db_session, job_type="sms")
        failing_response = await _respond(db_session, 500, _job_headers(failing.id))
        await _respond(db_session, 204, _job_headers(succeeding.id))

        class BrokenRetryEngine:
            def __init__(self, session):
                pass

            async def fail_with_retry(self, job):
                raise RuntimeError("retry engine unavailable")

        monkeypatch.setattr(correlator_module, "RetryEngine", BrokenRetryEngine)

        assert await Correlator().run_once() == 1

        assert (await refresh(failing.id)).state == JobState.RUNNING
        assert (await refresh(succeeding.id)).state == JobState.COMPLETED
        # Rolled back with the failed transition, picked up again next tick
        assert await ResponseRepository(db_session).list_pending_ids() == [failing_response]

    async def test_unconsumable_rows_do_not_hide_job_responses(self, db_session, refresh):
        """Test that a long head of foreign and error rows is walked past."""
        job = await _running_job(db_session)
        responses = ResponseRepository(db_session)
        for _ in range(30):
            await responses.add_response(None, None, None, "timed out")
        for _ in range(15):
            await responses.add_response(200, {"x-other": "1"}, "")
        await db_session.commit()
        await _respond(db_session, 204, _job_headers(job.id))

        assert await Correlator(batch_size=10).run_once() == 1

        assert (await refresh(job.id)).state == JobState.COMPLETED

    async def test_repeatedly_failing_response_does_not_hide_later_ones(
        self, db_session, refresh, monkeypatch
    ):
        """Test that a response which keeps raising is stepped over within the tick."""
        failing = await _running_job(db_session, job_type="email")
        succeeding = await _running_job(db_session, job_type="sms")
        await _respond(db_session, 500, _job_headers(failing.id))
        await _respond(db_session, 204, _job_headers(succeeding.id))

        class BrokenRetryEngine:
            def __init__(self, session):
                pass

            async def fail_with_retry(self, job):
                raise RuntimeError("retry engine unavailable")

        monkeypatch.setattr(correlator_module, "RetryEngine", BrokenRetryEngine)

        for _ in range(2):
            await Correlator(batch_size=1).run_once()

        assert (await refresh(failing.id)).state == JobState.RUNNING
        assert (await refresh(succeeding.id)).state == JobState.COMPLETED
