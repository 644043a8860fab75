"""
Transport module.
Contains the asynchronous worker transport and credential minting.
"""

from jobrelay.transport.credentials import mint_credential
from jobrelay.transport.http import (
    HttpTransport,
    Transport,
    build_worker_request,
    get_correlation_id,
    is_job_response,
    normalize_headers,
)

__all__ = [
    "HttpTransport",
    "Transport",
    "build_worker_request",
    "mint_credential",
    "normalize_headers",
    "is_job_response",
    "get_correlation_id",
]
