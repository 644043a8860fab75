"""
OpenTelemetry tracing setup.

Each scheduler tick and each job submission is a span; spans that act on a
job carry its id, type and owner so a job can be followed across the API
and scheduler processes.
"""

import logging
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Tracer

from jobrelay import __version__
from jobrelay.config import get_settings

logger = logging.getLogger(__name__)

_tracer: Tracer | None = None


def setup_tracing(component: str | None = None) -> Tracer:
    """
    Install a tracer provider exporting over OTLP.

    Export is skipped when ``otel_enabled`` is off; spans are still created
    so trace ids keep showing up in the logs.

    Args:
        component: Process role recorded on the resource.

    Returns:
        Tracer: The tracer instance.
    """
    global _tracer

    settings = get_settings()
    attributes = {
        "service.name": settings.otel_service_name,
        "service.version": __version__,
    }
    if component is not None:
        attributes["service.component"] = component

    provider = TracerProvider(resource=Resource.create(attributes))

    if settings.otel_enabled:
        try:
            exporter = OTLPSpanExporter(
                endpoint=settings.otel_exporter_otlp_endpoint,
                insecure=True,
            )
            provider.add_span_processor(BatchSpanProcessor(exporter))
        except Exception:
            logger.warning(
                "OTLP exporter unavailable, spans will not be exported",
                extra={"endpoint": settings.otel_exporter_otlp_endpoint},
            )

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer(settings.otel_service_name)
    return _tracer


def get_tracer() -> Tracer:
    """
    Get the tracer.

    Before ``setup_tracing`` has run this is the global proxy tracer, which
    records nothing until a provider is installed.
    """
    if _tracer is None:
        return trace.get_tracer(get_settings().otel_service_name)
    return _tracer


def set_job_attributes(span: Span, job: Any) -> None:
    """Tag a span with the identity of the job it acts on."""
    span.set_attribute("job.id", str(job.id))
    span.set_attribute("job.type", job.job_type)
    span.set_attribute("job.owner_id", job.owner_id)
    span.set_attribute("job.retries", job.retries)


def instrument_fastapi(app: Any) -> None:
    """Instrument a FastAPI application."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: Any) -> None:
    """
    Instrument a SQLAlchemy engine.

    Args:
        engine: A sync engine; pass ``AsyncEngine.sync_engine`` for async ones.
    """
    SQLAlchemyInstrumentor().instrument(engine=engine)
