"""
Pytest configuration and shared fixtures.
"""

import os
from collections.abc import AsyncGenerator, Callable
from typing import Any
from uuid import UUID, uuid4

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from jobrelay.api.auth import create_access_token
from jobrelay.api.main import create_app
from jobrelay.db import close_db, create_engine, get_session_factory, init_db
from jobrelay.db.models import Base, Job
from jobrelay.db.repository import JobConfigRepository
from jobrelay.transport.http import HttpTransport
from jobrelay.types.job import OutboundRequest

# Set TEST_DATABASE_URL to run against PostgreSQL; SQLite is used otherwise
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


@pytest.fixture
def database_url(tmp_path) -> str:
    """Get the test database URL."""
    return TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'jobrelay_test.db'}"


@pytest_asyncio.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create an async database engine with a fresh schema."""
    engine = create_engine(database_url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(async_engine: AsyncEngine) -> AsyncGenerator[None]:
    """Point the package-wide session factory at the test engine."""
    await init_db(async_engine)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(db) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests."""
    async with get_session_factory()() as session:
        yield session
        await session.rollback()


@pytest.fixture
def refresh(db_session: AsyncSession) -> Callable:
    """Reload a job from the database, bypassing the identity map."""

    async def _refresh(job_id: UUID) -> Job | None:
        return await db_session.get(Job, job_id, populate_existing=True)

    return _refresh


@pytest.fixture
def configure(db_session: AsyncSession) -> Callable:
    """Create and commit a job type configuration."""

    async def _configure(job_type: str, enabled: bool = True, concurrency_limit: int = 1):
        config = await JobConfigRepository(db_session).upsert_config(
            job_type, enabled=enabled, concurrency_limit=concurrency_limit
        )
        await db_session.commit()
        return config

    return _configure


class RecordingTransport:
    """Transport that only remembers what it was asked to send."""

    def __init__(self):
        self.requests: list[OutboundRequest] = []

    def submit(self, request: OutboundRequest) -> None:
        self.requests.append(request)

    @property
    def correlation_ids(self) -> list[UUID]:
        return [request.correlation_id for request in self.requests]


class FakeWorker:
    """
    In-process worker endpoint served through httpx.MockTransport.

    Answers with the queued statuses in order (then ``default_status``) and
    echoes the correlation headers unless told not to.
    """

    def __init__(self, default_status: int = 204):
        self.default_status = default_status
        self.statuses: list[int] = []
        self.echo_marker = True
        self.echo_correlation_id = True
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status_code = self.statuses.pop(0) if self.statuses else self.default_status
        headers = {}
        if self.echo_marker:
            headers["X-Job"] = "true"
        if self.echo_correlation_id:
            headers["X-Correlation-ID"] = request.headers["X-Correlation-ID"]
        return httpx.Response(status_code, headers=headers)


@pytest.fixture
def recording_transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def fake_worker() -> FakeWorker:
    return FakeWorker()


@pytest_asyncio.fixture
async def http_transport(db, fake_worker: FakeWorker) -> AsyncGenerator[HttpTransport]:
    """HttpTransport wired to the fake worker and the test database."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_worker.handler))
    transport = HttpTransport(client=client)
    yield transport
    await transport.aclose()
    await client.aclose()


@pytest_asyncio.fixture
async def app(db) -> AsyncGenerator[FastAPI]:
    """Create a FastAPI app for testing with initialized database."""
    yield create_app()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def owner_id() -> str:
    """Generate a test owner ID."""
    return f"test-owner-{uuid4().hex[:8]}"


@pytest.fixture
def auth_headers(owner_id: str) -> dict[str, str]:
    """Create authentication headers for testing."""
    token = create_access_token(owner_id=owner_id)
    return {
        "Authorization": f"Bearer {token}",
    }


@pytest.fixture
def sample_payload() -> dict[str, Any]:
    """Create a sample job payload."""
    return {"to": "someone@example.com", "subject": "Hello, World!"}
