"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobState(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> RUNNING (claimed by the dispatcher)
    - PENDING -> CANCELED (explicit cancel)
    - RUNNING -> COMPLETED (worker answered with a success status)
    - RUNNING -> PENDING (failure with retries left, or lease expired)
    - RUNNING -> FAILED (retries exhausted)

    COMPLETED, FAILED and CANCELED are terminal.
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


class LogLevel(StrEnum):
    """Severity of an audit log entry."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


# Default values
DEFAULT_MAX_RETRIES = 3
DEFAULT_CONCURRENCY_LIMIT = 1

# Worker responses with these statuses complete the job
SUCCESS_STATUS_CODES: frozenset[int] = frozenset({200, 201, 204})

# Worker protocol headers (lowercase, as compared after normalization)
JOB_MARKER_HEADER = "x-job"
CORRELATION_ID_HEADER = "x-correlation-id"

# API constants
API_V1_PREFIX = "/v1"

# Audit log messages
LOG_JOB_CREATED = "job run created"
LOG_JOB_CANCELED = "job run canceled"
LOG_JOB_STARTED = "job run started"
LOG_JOB_COMPLETED = "job run completed successfully"
LOG_JOB_RETRIED = "job run failed and will be retried"

# Metrics names
METRIC_JOBS_SUBMITTED = "jobs_submitted_total"
METRIC_JOBS_DISPATCHED = "jobs_dispatched_total"
METRIC_JOBS_RESOLVED = "jobs_resolved_total"
METRIC_JOBS_RETRIED = "jobs_retried_total"
METRIC_LEASES_RECLAIMED = "leases_reclaimed_total"
METRIC_RESPONSES_PROCESSED = "responses_processed_total"
METRIC_API_REQUESTS = "api_requests_total"
METRIC_API_LATENCY = "api_request_latency_seconds"

# Trace span names
SPAN_SUBMIT_JOB = "submit_job"
SPAN_DISPATCH_TICK = "dispatch_tick"
SPAN_DISPATCH_GROUP = "dispatch_group"
SPAN_CORRELATE_TICK = "correlate_tick"
SPAN_CORRELATE_RESPONSE = "correlate_response"
SPAN_RECLAIM_TICK = "reclaim_tick"
