from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .dependencies import ServiceContainer, build_container
from .logging_config import setup_logging
from .routers import sync as sync_router
from .routers import tasks as tasks_router
from .scheduler import run_sync_scheduler
from .settings import Settings, get_settings

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {
        "name": "tasks",
        "description": "Offline-first task CRUD. Every change is queued for synchronization.",
    },
    {
        "name": "sync",
        "description": "Trigger reconciliation with the remote service and inspect the outbox.",
    },
]


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    container: ServiceContainer = app.state.container
    interval = container.settings.sync_interval_seconds
    scheduler: Optional[asyncio.Task] = None
    if interval > 0:
        scheduler = asyncio.create_task(
            run_sync_scheduler(container.sync_engine, interval_seconds=interval)
        )
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await scheduler
        container.close()


# PUBLIC_INTERFACE
def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Build the FastAPI application with its services wired in.

    Tests pass a prebuilt container (for example one whose HTTP client uses
    a mock transport); production builds one from environment settings.
    """
    settings = settings or (container.settings if container else get_settings())
    setup_logging(settings.log_level)

    app = FastAPI(
        title="Task Sync Backend",
        description="Offline-first task list with an outbox that reconciles against a remote service.",
        version="0.1.0",
        openapi_tags=openapi_tags,
        lifespan=_lifespan,
    )
    app.state.container = container or build_container(settings)

    # Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
    allow_all = (settings.cors_allow_origins == ["*"]) or (len(settings.cors_allow_origins) == 0)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Global exception handlers for consistent JSON on validation errors
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """
        Return a consistent JSON structure for request validation errors.

        Response format:
            {
                "error": "ValidationError",
                "detail": [... pydantic/fastapi error details ...],
                "message": "Request validation failed"
            }
        """
        return JSONResponse(
            status_code=422,
            content={
                "error": "ValidationError",
                "message": "Request validation failed",
                "detail": jsonable_encoder(exc.errors()),
            },
        )

    # PUBLIC_INTERFACE
    @app.get("/", summary="Health Check", tags=["health"])
    def health_check():
        """
        Health check endpoint.

        Returns:
            A JSON object indicating service health.
        """
        return {"message": "Healthy", "backend": settings.persistence_backend}

    app.include_router(tasks_router.router)
    app.include_router(sync_router.router)
    return app


app = create_app()
