from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .logging_config import configure_logging
from .preferences import PreferencesFile
from .routers import big_tasks as big_tasks_router
from .routers import daily_tasks as daily_tasks_router
from .routers import expenses as expenses_router
from .routers import preferences as preferences_router
from .routers import stats as stats_router
from .routers import templates as templates_router
from .service import ConfirmationRequiredError, SaveFailedError, TrackerService
from .settings import Settings, get_settings
from .store import DuplicateError, NotFoundError, Store, StoreError, get_store

logger = structlog.get_logger(__name__)

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {"name": "daily-tasks", "description": "Daily tasks: materialization of fixed tasks, ad hoc tasks, completion."},
    {"name": "templates", "description": "Recurring task templates that produce one fixed task per day."},
    {"name": "big-tasks", "description": "Long-running challenges with progress tracking."},
    {"name": "expenses", "description": "Spending recorded against the reward balance."},
    {"name": "stats", "description": "Balance, dashboard, category and monthly projections."},
    {"name": "preferences", "description": "First-run flags stored outside the main store."},
]


def _register_exception_handlers(app: FastAPI) -> None:
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

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ConfirmationRequiredError)
    async def confirmation_handler(request: Request, exc: ConfirmationRequiredError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(DuplicateError)
    async def duplicate_handler(request: Request, exc: DuplicateError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(SaveFailedError)
    async def save_failed_handler(request: Request, exc: SaveFailedError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"error": "SaveFailed", "detail": str(exc)})

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
        logger.error("store_error", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=503, content={"error": "StoreUnavailable", "detail": str(exc)})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})


# PUBLIC_INTERFACE
def create_app(
    settings: Optional[Settings] = None,
    store: Optional[Store] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Configuration; read from the environment when omitted.
        store: Store handle; built from settings when omitted.
        clock: Source of "now" for the service; datetime.now when omitted.

    The service and preferences live on app.state and reach handlers through
    dependencies. Pending debounced saves are flushed when the app shuts down.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_json)
    service = TrackerService(store if store is not None else get_store(settings), settings, clock or datetime.now)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("app_started", backend=settings.persistence_backend)
        yield
        service.close()
        logger.info("app_stopped")

    app = FastAPI(
        title="TollFund Backend",
        description="Habit and reward tracker: daily tasks, challenges, expenses and the resulting balance.",
        version="0.1.0",
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.service = service
    app.state.preferences = PreferencesFile(settings.preferences_path)

    # Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
    allow_all = (settings.cors_allow_origins == ["*"]) or (len(settings.cors_allow_origins) == 0)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_exception_handlers(app)

    # PUBLIC_INTERFACE
    @app.get("/", summary="Health Check", tags=["health"])
    def health_check():
        """
        Health check endpoint.

        Returns:
            A JSON object indicating service health.
        """
        return {"message": "Healthy", "backend": settings.persistence_backend}

    # Include routers
    app.include_router(daily_tasks_router.router)
    app.include_router(templates_router.router)
    app.include_router(big_tasks_router.router)
    app.include_router(expenses_router.router)
    app.include_router(stats_router.router)
    app.include_router(preferences_router.router)
    return app


app = create_app()
