"""
Type definitions for the job relay.
Contains input/output type definitions, grouped by module.
"""

from jobrelay.types.api import (
    AuthRequest,
    CancelJobResponse,
    CreateJobRequest,
    CreateJobResponse,
    ErrorResponse,
    HealthResponse,
    JobConfigRequest,
    JobConfigResponse,
    JobListResponse,
    JobLogResponse,
    JobResponse,
    TokenResponse,
)
from jobrelay.types.job import DispatchGroup, OutboundRequest

__all__ = [
    # API types
    "CreateJobRequest",
    "CreateJobResponse",
    "CancelJobResponse",
    "JobResponse",
    "JobListResponse",
    "JobLogResponse",
    "JobConfigRequest",
    "JobConfigResponse",
    "TokenResponse",
    "AuthRequest",
    "HealthResponse",
    "ErrorResponse",
    # Job types
    "OutboundRequest",
    "DispatchGroup",
]
