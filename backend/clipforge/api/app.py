"""FastAPI application setup with lifespan and exception handlers."""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clipforge import __version__, validate_dependencies
from clipforge.api.routes import router
from clipforge.config import settings
from clipforge.db import init_database, shutdown
from clipforge.errors import (
    InvalidStateError,
    NoEligibleClipsError,
    ProjectNotFoundError,
    UnrecognizedStyleError,
)
from clipforge.orchestrator.registry import PipelineRegistry
from clipforge.services.generation import GenerationProvider, get_provider
from clipforge.services.progress import ProgressPublisher
from clipforge.services.project_store import ProjectStore

logger = logging.getLogger(__name__)


def create_app(
    *,
    store: Optional[ProjectStore] = None,
    provider: Optional[GenerationProvider] = None,
    check_dependencies: bool = True,
) -> FastAPI:
    """Build the API application.

    Args:
        store: Project store to serve; defaults to one over the configured
            database, whose schema is created at startup
        provider: Generation provider; defaults to get_provider()
        check_dependencies: Validate ffmpeg at startup
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager.

        Startup:
            - Validate system dependencies (ffmpeg)
            - Initialize database schema
            - Create the progress publisher and pipeline registry

        Shutdown:
            - Cancel active pipelines
            - Close database connections
        """
        logger.info("Starting clipforge API...")
        if check_dependencies:
            validate_dependencies()

        owns_database = store is None
        if owns_database:
            await init_database()

        app.state.store = store or ProjectStore()
        app.state.publisher = ProgressPublisher()
        app.state.registry = PipelineRegistry(
            app.state.store,
            app.state.publisher,
            provider or get_provider(),
        )
        logger.info("API startup complete")

        yield

        logger.info("Shutting down clipforge API...")
        await app.state.registry.shutdown()
        if owns_database:
            await shutdown()
        logger.info("API shutdown complete")

    app = FastAPI(
        title="Clipforge API",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    _register_exception_handlers(app)
    return app


def _error_response(status_code: int, error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "detail": str(exc)})


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ProjectNotFoundError)
    async def not_found_handler(request: Request, exc: ProjectNotFoundError):
        return _error_response(404, "Project not found", exc)

    @app.exception_handler(InvalidStateError)
    async def invalid_state_handler(request: Request, exc: InvalidStateError):
        return _error_response(409, "Invalid project state", exc)

    @app.exception_handler(NoEligibleClipsError)
    async def no_clips_handler(request: Request, exc: NoEligibleClipsError):
        return _error_response(400, "No eligible clips", exc)

    @app.exception_handler(UnrecognizedStyleError)
    async def style_handler(request: Request, exc: UnrecognizedStyleError):
        return JSONResponse(
            status_code=400,
            content={
                "error": "Unrecognized style",
                "detail": str(exc),
                "supported": exc.supported,
            },
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler to prevent stack traces in API responses."""
        logger.error(
            f"Unhandled exception in {request.method} {request.url.path}: "
            f"{type(exc).__name__}: {str(exc)}"
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc),
            },
        )


app = create_app()
