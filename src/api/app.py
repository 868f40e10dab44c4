"""
FastAPI application factory.
"""

import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.api.dependencies import cleanup_dependencies, get_pipeline
from src.api.routes import health, sources, websub

logger = structlog.get_logger(__name__)

QUIET_PATHS = frozenset({"/health", "/websub/callback"})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("feedwatch API starting up")
    app.state.pipeline = await get_pipeline()

    yield

    logger.info("feedwatch API shutting down")
    await cleanup_dependencies()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application
    """
    openapi_tags = [
        {"name": "health", "description": "Service health checks"},
        {"name": "websub", "description": "WebSub hub callbacks"},
        {"name": "sources", "description": "Forced rescrapes and channel checks"},
    ]

    app = FastAPI(
        title="feedwatch API",
        description="""
Content ingestion service for websites and YouTube channels.

- `/websub/callback` is the WebSub subscriber endpoint given to the hub
- `/sources/{id}/rescrape` and `/channels/{id}/check` run a fetch now and
  return the reconcile counts
        """,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
        openapi_tags=openapi_tags,
    )

    # Health checks and hub deliveries log at debug
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        structlog.contextvars.bind_contextvars(request_id=request_id)
        started = time.perf_counter()

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id

            log = logger.debug if request.url.path in QUIET_PATHS else logger.info
            log(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            return response
        finally:
            structlog.contextvars.clear_contextvars()

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception", path=request.url.path, error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "error_type": "internal"},
        )

    app.include_router(health.router, tags=["health"])
    app.include_router(websub.router, tags=["websub"])
    app.include_router(sources.router, tags=["sources"])

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "service": "feedwatch API",
            "version": "0.1.0",
            "docs": "/docs",
        }

    return app
