"""
FastAPI application entry point.
"""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from jobrelay import __version__
from jobrelay.api.routes import auth_router, configs_router, health_router, jobs_router
from jobrelay.config import get_settings
from jobrelay.db import close_db, init_db
from jobrelay.exceptions import JobValidationError
from jobrelay.observability.logging import setup_logging
from jobrelay.observability.metrics import get_metrics, setup_metrics
from jobrelay.observability.tracing import instrument_fastapi, setup_tracing
from jobrelay.types.api import ErrorResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    setup_logging(component="api")
    setup_metrics()
    setup_tracing(component="api")
    await init_db()

    logger.info("Application started")

    yield

    await close_db()
    logger.info("Application shutdown")


async def validation_error_handler(request: Request, exc: JobValidationError) -> JSONResponse:
    """Turn enqueue validation failures into 422 responses."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse(error="validation_error", detail=str(exc)).model_dump(),
    )


async def record_request_metrics(request: Request, call_next):
    """Count API requests and their latency by route template."""
    start = time.perf_counter()
    response = await call_next(request)
    route = request.scope.get("route")
    get_metrics().record_api_request(
        method=request.method,
        endpoint=getattr(route, "path", request.url.path),
        status=response.status_code,
        duration_seconds=time.perf_counter() - start,
    )
    return response


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="Job Relay API",
        description="Asynchronous job execution over HTTP worker endpoints",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(record_request_metrics)

    app.add_exception_handler(JobValidationError, validation_error_handler)

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(jobs_router)
    app.include_router(configs_router)

    instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()

    uvicorn.run(
        "jobrelay.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    run()
