"""
Append-only audit trail of job lifecycle events.

Entries are written in the same transaction as the transition they describe
but are never authoritative: job state lives on the job row only.
"""

from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jobrelay.clock import utcnow
from jobrelay.constants import LogLevel
from jobrelay.db.models import JobLog


class AuditLog:
    """Writes and reads ``job_logs`` entries."""

    def __init__(self, session: AsyncSession):
        self._session = session

    def record(
        self,
        job_id: UUID | None,
        message: str,
        level: LogLevel = LogLevel.INFO,
    ) -> None:
        """
        Append an entry for a job to the caller's transaction.

        The entry is flushed and committed with the transition it describes,
        so it is rolled back with it as well.

        Args:
            job_id: The job the entry refers to.
            message: Human readable event description.
            level: Entry severity.
        """
        self._session.add(
            JobLog(job_id=job_id, message=message, level=level, created_at=utcnow())
        )

    async def list_for_job(self, job_id: UUID) -> Sequence[JobLog]:
        """
        List the entries of a job in the order they were written.

        Args:
            job_id: The job UUID.

        Returns:
            Entries ordered by creation time.
        """
        stmt = (
            select(JobLog)
            .where(JobLog.job_id == job_id)
            .order_by(JobLog.created_at)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()
