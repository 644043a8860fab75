"""
Exceptions raised synchronously to callers of the enqueue API.

Asynchronous outcomes (worker failures, exhausted retries, lost responses)
are never raised: they are observable through job state and the audit log.
"""


class JobRelayError(Exception):
    """Base class for job relay errors."""


class JobValidationError(JobRelayError, ValueError):
    """Malformed enqueue input (blank job type, bad retry limit)."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")
