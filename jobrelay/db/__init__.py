"""
Persistence layer: engine and sessions, ORM models, repositories.
"""

from jobrelay.db.connection import (
    close_db,
    create_engine,
    get_async_session,
    get_engine,
    get_session_context,
    get_session_factory,
    init_db,
)
from jobrelay.db.models import Base, HttpResponse, Job, JobConfig, JobLog

__all__ = [
    "create_engine",
    "get_engine",
    "init_db",
    "close_db",
    "get_session_factory",
    "get_session_context",
    "get_async_session",
    "Base",
    "Job",
    "JobConfig",
    "JobLog",
    "HttpResponse",
]
