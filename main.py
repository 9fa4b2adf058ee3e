"""HTTP bootstrap server - main entry point for all client requests."""

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import Settings, get_settings
from app.logging_config import setup_logging
from app.middleware import PipelineMiddleware, build_pipeline
from app.routes import router
from app.services import ErrorService, RateLimitService, StaticFileService

try:
    import uvicorn
except ImportError:  # pragma: no cover - uvicorn optional for ASGI deployments
    uvicorn = None

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application."""
    settings: Settings = app.state.settings
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    logger.info(f"Starting {settings.SERVICE_NAME} v{settings.SERVICE_VERSION}")
    logger.info(
        "Environment: %s | Server: %s:%s | Uploads: %s",
        settings.ENVIRONMENT,
        settings.HOST,
        settings.PORT,
        app.state.static_file_service.root_dir,
    )

    rate_limit_service: RateLimitService = app.state.rate_limit_service
    if settings.RATE_LIMIT_ENABLED:
        await rate_limit_service.start_sweeper(settings.RATE_LIMIT_SWEEP_INTERVAL_MS)

    logger.info(f"{settings.SERVICE_NAME} startup complete")

    yield

    logger.info(f"Shutting down {settings.SERVICE_NAME}")
    await rate_limit_service.stop_sweeper()
    logger.info(f"{settings.SERVICE_NAME} shutdown complete")


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors raised inside handlers with the shared error body."""
    if exc.status_code in (404, 405):
        return ErrorService.not_found()
    return ErrorService.error_json(exc.status_code, str(exc.detail), headers=exc.headers)


def create_app(
    settings: Optional[Settings] = None,
    clock: Optional[Callable[[], float]] = None,
) -> FastAPI:
    """Build the application with its own rate limiter and pipeline.

    Args:
        settings: Settings to use; loaded from the environment when omitted
        clock: Millisecond clock for the rate limiter
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )

    rate_limit_service = RateLimitService(
        window_ms=settings.RATE_LIMIT_WINDOW_MS,
        max_requests=settings.RATE_LIMIT_MAX,
        max_buckets=settings.RATE_LIMIT_MAX_BUCKETS,
        clock=clock,
    )
    static_file_service = StaticFileService(settings.UPLOAD_DIR)

    # Store in app state
    app.state.settings = settings
    app.state.rate_limit_service = rate_limit_service
    app.state.static_file_service = static_file_service

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.include_router(router)

    pipeline = build_pipeline(
        settings,
        rate_limit_service=rate_limit_service,
        static_file_service=static_file_service,
        routes=app.router.routes,
    )
    app.state.pipeline = pipeline
    app.add_middleware(PipelineMiddleware, pipeline=pipeline)

    logger.info(f"Pipeline configured: {' -> '.join(pipeline.names)}")
    return app


app = create_app()


if __name__ == "__main__" and uvicorn:
    uvicorn.run(
        "main:app",
        host=app.state.settings.HOST,
        # An unset PORT lets the OS pick a free port
        port=app.state.settings.PORT if app.state.settings.PORT is not None else 0,
        reload=app.state.settings.ENVIRONMENT.lower() == "development",
    )
