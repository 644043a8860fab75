"""
Unit tests for the enqueue API.
"""

from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from jobrelay.audit import AuditLog
from jobrelay.constants import LOG_JOB_CANCELED, LOG_JOB_CREATED, JobState
from jobrelay.db.repository import JobRepository
from jobrelay.enqueue import EnqueueService
from jobrelay.exceptions import JobValidationError


class TestEnqueueService:
    """Tests for EnqueueService."""

    async def test_submit_creates_pending_job(self, db_session: AsyncSession):
        """Test that submit stores a pending job and audits it."""
        job_id = await EnqueueService(db_session).submit(
            owner_id="owner-1",
            job_type="email",
            payload={"to": "someone@example.com"},
        )
        await db_session.commit()

        job = await JobRepository(db_session).get_job(job_id)
        assert job.state == JobState.PENDING
        assert job.retries == 0
        assert job.max_retries == 3
        assert job.payload == {"to": "someone@example.com"}

        entries = await AuditLog(db_session).list_for_job(job_id)
        assert [entry.message for entry in entries] == [LOG_JOB_CREATED]

    @pytest.mark.parametrize("job_type", ["", "   "])
    async def test_submit_rejects_blank_job_type(self, db_session: AsyncSession, job_type: str):
        """Test that a blank job type is rejected before anything is stored."""
        with pytest.raises(JobValidationError) as exc_info:
            await EnqueueService(db_session).submit("owner-1", job_type, None)

        assert exc_info.value.field == "job_type"
        _, total = await JobRepository(db_session).list_jobs("owner-1")
        assert total == 0

    async def test_submit_rejects_zero_retries(self, db_session: AsyncSession):
        """Test that max_retries must allow at least one attempt."""
        with pytest.raises(JobValidationError) as exc_info:
            await EnqueueService(db_session).submit("owner-1", "email", None, max_retries=0)

        assert exc_info.value.field == "max_retries"

    async def test_cancel_pending(self, db_session: AsyncSession):
        """Test canceling a pending job."""
        service = EnqueueService(db_session)
        job_id = await service.submit("owner-1", "email", None)
        await db_session.commit()

        assert await service.cancel(job_id) is True
        await db_session.commit()

        entries = await AuditLog(db_session).list_for_job(job_id)
        assert [entry.message for entry in entries] == [LOG_JOB_CREATED, LOG_JOB_CANCELED]

    async def test_cancel_is_noop_when_not_pending(self, db_session: AsyncSession):
        """Test that canceling twice or an unknown job changes nothing."""
        service = EnqueueService(db_session)
        job_id = await service.submit("owner-1", "email", None)
        await db_session.commit()
        await service.cancel(job_id)
        await db_session.commit()

        assert await service.cancel(job_id) is False
        assert await service.cancel(uuid4()) is False

        entries = await AuditLog(db_session).list_for_job(job_id)
        assert len(entries) == 2
