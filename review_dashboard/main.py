"""
FastAPI Application Entry Point

This module creates and configures the FastAPI application.
It sets up all routes, middleware, and exception handlers.

Design Decisions:
- Use lifespan events to open and close the database
- Map AppError subclasses to their status code and error code
- Never expose stack traces to API callers
- Expose health and readiness endpoints
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from review_dashboard import __version__
from review_dashboard.config import Settings, get_settings
from review_dashboard.database import Database, SettingsStore
from review_dashboard.errors import AppError, RequestValidationFailed, UpstreamError
from review_dashboard.logging_config import get_logger, setup_logging
from review_dashboard.routes import ai_router, gitlab_router, merge_requests_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Connects the database, creates the schema and seeds default settings
    on startup; closes the database on shutdown.
    """
    settings: Settings = app.state.settings

    logger.info(
        "Starting review dashboard",
        host=settings.host,
        port=settings.port
    )

    db = Database(settings.database_url, echo=settings.database_echo)
    await db.connect()
    await SettingsStore(db).seed_defaults()
    app.state.db = db

    logger.info("Database ready", backend=db.backend)

    try:
        yield
    finally:
        logger.info("Shutting down review dashboard")
        await db.close()


def _error_response(exc: AppError) -> JSONResponse:
    content = {"detail": exc.message, "code": exc.code}
    if isinstance(exc, UpstreamError):
        # Upstream text stays in the logs
        content["detail"] = f"{exc.service} request failed"
    elif exc.details is not None:
        content["errors"] = jsonable_encoder(exc.details)
    return JSONResponse(status_code=exc.status_code, content=content)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings to use (defaults to the environment)

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title="AI Review Dashboard",
        description="AI-generated code reviews for GitLab merge requests",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json"
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routes
    app.include_router(gitlab_router)
    app.include_router(ai_router)
    app.include_router(merge_requests_router)

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        """Handle errors raised on purpose by routes and services."""
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "Request failed",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            code=exc.code,
            error=str(exc)
        )
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request,
        exc: RequestValidationError
    ) -> JSONResponse:
        """Report malformed bodies and parameters with the common error shape."""
        logger.warning(
            "Request validation failed",
            path=request.url.path,
            method=request.method,
            num_errors=len(exc.errors())
        )
        return _error_response(RequestValidationFailed("Invalid request", details=exc.errors()))

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request,
        exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=True
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "Internal server error",
                "code": "INTERNAL_ERROR"
            }
        )

    @app.get("/")
    async def root():
        """Root endpoint with basic info."""
        return {
            "name": "AI Review Dashboard",
            "version": __version__,
            "status": "running",
            "docs": "/docs"
        }

    @app.get("/health")
    async def health_check():
        """
        Health check endpoint.

        Returns basic health status for load balancers and monitors.
        """
        return {
            "status": "healthy",
            "service": "review-dashboard",
            "version": __version__
        }

    @app.get("/ready")
    async def readiness_check(request: Request):
        """
        Readiness check endpoint.

        Verifies that the database answers queries.
        """
        db: Optional[Database] = getattr(request.app.state, "db", None)
        if db is None or not await db.ping():
            logger.error("Readiness check failed", reason="database unavailable")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Not ready: database unavailable"
            )

        return {
            "status": "ready",
            "service": "review-dashboard",
            "database": db.backend
        }

    return app


# Create the application instance
app = create_app()
