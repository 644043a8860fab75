"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID


@dataclass
class OutboundRequest:
    """
    A request fired at a worker endpoint.

    The job id travels in the ``X-Correlation-ID`` header and is the only
    link between this request and the response that eventually lands in the
    backlog.
    """

    url: str
    correlation_id: UUID
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    timeout_seconds: float = 300.0


@dataclass
class DispatchGroup:
    """An (owner, job type) pair with eligible work, and the slots it may use."""

    owner_id: str
    job_type: str
    concurrency_limit: int = 1
    running: int = 0

    @property
    def available_slots(self) -> int:
        """Number of jobs that may be claimed without exceeding the limit."""
        return self.concurrency_limit - self.running

    @property
    def key(self) -> str:
        """Readable identifier for logs."""
        return f"{self.owner_id}/{self.job_type}"
