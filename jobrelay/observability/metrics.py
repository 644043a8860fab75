"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from jobrelay.constants import (
    METRIC_API_LATENCY,
    METRIC_API_REQUESTS,
    METRIC_JOBS_DISPATCHED,
    METRIC_JOBS_RESOLVED,
    METRIC_JOBS_RETRIED,
    METRIC_JOBS_SUBMITTED,
    METRIC_LEASES_RECLAIMED,
    METRIC_RESPONSES_PROCESSED,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job relay.

    Collects metrics for:
    - Job submissions
    - Dispatches to worker endpoints
    - Final outcomes and retries
    - Lease reclaims
    - Correlated responses
    - API requests
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_submitted = Counter(
            METRIC_JOBS_SUBMITTED,
            "Total number of jobs submitted",
            ["job_type"],
            registry=self._registry,
        )

        self.jobs_dispatched = Counter(
            METRIC_JOBS_DISPATCHED,
            "Total number of requests fired at worker endpoints",
            ["job_type"],
            registry=self._registry,
        )

        self.jobs_resolved = Counter(
            METRIC_JOBS_RESOLVED,
            "Total number of jobs that reached a terminal state",
            ["job_type", "state"],
            registry=self._registry,
        )

        self.jobs_retried = Counter(
            METRIC_JOBS_RETRIED,
            "Total number of failed attempts scheduled for retry",
            ["job_type"],
            registry=self._registry,
        )

        self.leases_reclaimed = Counter(
            METRIC_LEASES_RECLAIMED,
            "Total number of running jobs reset after lease expiry",
            registry=self._registry,
        )

        self.responses_processed = Counter(
            METRIC_RESPONSES_PROCESSED,
            "Total number of backlog responses consumed by the correlator",
            ["outcome"],
            registry=self._registry,
        )

        self.api_requests = Counter(
            METRIC_API_REQUESTS,
            "Total number of API requests",
            ["method", "endpoint", "status"],
            registry=self._registry,
        )

        self.api_latency = Histogram(
            METRIC_API_LATENCY,
            "API request latency in seconds",
            ["method", "endpoint"],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
            registry=self._registry,
        )

    def record_job_submitted(self, job_type: str) -> None:
        """Record a job submission."""
        self.jobs_submitted.labels(job_type=job_type).inc()

    def record_jobs_dispatched(self, job_type: str, count: int = 1) -> None:
        """Record requests fired at a worker endpoint."""
        self.jobs_dispatched.labels(job_type=job_type).inc(count)

    def record_job_resolved(self, job_type: str, state: str) -> None:
        """Record a job reaching a terminal state."""
        self.jobs_resolved.labels(job_type=job_type, state=state).inc()

    def record_job_retried(self, job_type: str) -> None:
        """Record a failure that will be retried."""
        self.jobs_retried.labels(job_type=job_type).inc()

    def record_leases_reclaimed(self, count: int) -> None:
        """Record jobs reset by the reclaimer."""
        self.leases_reclaimed.inc(count)

    def record_response_processed(self, outcome: str) -> None:
        """Record one backlog response and what became of it."""
        self.responses_processed.labels(outcome=outcome).inc()

    def record_api_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration_seconds: float,
    ) -> None:
        """Record an API request."""
        self.api_requests.labels(
            method=method,
            endpoint=endpoint,
            status=str(status),
        ).inc()
        self.api_latency.labels(method=method, endpoint=endpoint).observe(
            duration_seconds
        )

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
