"""
Asynchronous worker transport.

Requests are fired without waiting for them: ``submit`` returns as soon as
the request is scheduled. Whatever comes back (a response, or the error
that prevented one) is appended to the ``http_responses`` backlog, where
the correlator picks it up on its own schedule.
"""

import asyncio
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Protocol

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from jobrelay.config import get_settings
from jobrelay.constants import CORRELATION_ID_HEADER, JOB_MARKER_HEADER
from jobrelay.db.connection import get_session_context
from jobrelay.db.models import Job
from jobrelay.db.repository import ResponseRepository
from jobrelay.transport.credentials import mint_credential
from jobrelay.types.job import OutboundRequest

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class Transport(Protocol):
    """Fire-and-forget outbound transport."""

    def submit(self, request: OutboundRequest) -> None:
        """Schedule a request; never blocks on the response."""
        ...


def build_worker_request(job: Job, timeout_seconds: float | None = None) -> OutboundRequest:
    """
    Build the request that runs a job on its worker endpoint.

    Args:
        job: The claimed job.
        timeout_seconds: Per-request timeout. Defaults to the dispatch timeout.

    Returns:
        The outbound request.
    """
    settings = get_settings()
    if timeout_seconds is None:
        timeout_seconds = settings.dispatch_timeout_seconds

    return OutboundRequest(
        url=f"{settings.worker_base_url.rstrip('/')}/{job.job_type}",
        correlation_id=job.id,
        headers={
            "Content-Type": "application/json",
            "Authorization": mint_credential(job.owner_id),
            "X-Correlation-ID": str(job.id),
            "X-Job": "true",
        },
        body=job.payload,
        timeout_seconds=timeout_seconds,
    )


class HttpTransport:
    """
    httpx based transport writing outcomes to the response backlog.

    Features:
    - Requests run as background tasks on the current event loop
    - Per-request timeout
    - Transport errors are recorded without headers, so they are never
      attributed to a job and are recovered by lease expiry instead
    """

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the transport.

        Args:
            session_factory: Opens a session for writing backlog rows.
            client: Optional preconfigured httpx client. Owned and closed by
                the transport when not provided.
        """
        self._session_factory = session_factory or get_session_context
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None
        self._in_flight: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        """Number of requests still waiting for an outcome."""
        return len(self._in_flight)

    def submit(self, request: OutboundRequest) -> None:
        """Fire a request in the background."""
        task = asyncio.create_task(self._send(request))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _send(self, request: OutboundRequest) -> None:
        """Perform one request and append its outcome to the backlog."""
        try:
            response = await self._client.post(
                request.url,
                headers=request.headers,
                json=request.body,
                timeout=request.timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.warning(
                "Worker request failed without a response",
                extra={
                    "job_id": str(request.correlation_id),
                    "url": request.url,
                    "error": str(e) or type(e).__name__,
                },
            )
            await self._store(None, None, None, error_msg=str(e) or type(e).__name__)
            return

        logger.debug(
            "Worker responded",
            extra={
                "job_id": str(request.correlation_id),
                "status_code": response.status_code,
            },
        )
        await self._store(response.status_code, dict(response.headers), response.text)

    async def _store(
        self,
        status_code: int | None,
        headers: dict[str, str] | None,
        content: str | None,
        error_msg: str | None = None,
    ) -> None:
        try:
            async with self._session_factory() as session:
                repo = ResponseRepository(session)
                await repo.add_response(status_code, headers, content, error_msg)
        except Exception:
            # Lost responses are recovered by lease expiry
            logger.exception("Failed to store worker response")

    async def wait_idle(self) -> None:
        """Wait until every submitted request has an outcome in the backlog."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def aclose(self) -> None:
        """Drain in-flight requests and release the HTTP client."""
        await self.wait_idle()
        if self._owns_client:
            await self._client.aclose()


def is_job_response(headers: dict[str, str]) -> bool:
    """Check normalized headers for the job response marker."""
    return JOB_MARKER_HEADER in headers


def get_correlation_id(headers: dict[str, str]) -> str | None:
    """Read the correlation token from normalized headers."""
    return headers.get(CORRELATION_ID_HEADER)


def normalize_headers(headers: dict[str, str] | None) -> dict[str, str]:
    """Lowercase header names so lookups are case-insensitive."""
    if not headers:
        return {}
    return {str(key).lower(): value for key, value in headers.items()}
