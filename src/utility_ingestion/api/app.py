"""FastAPI application factory."""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from ..config import Settings
from ..errors import IngestionError
from ..ingestion.service import IngestionService
from ..storage.database import close_db, init_db
from ..storage.interface import UtilityStore
from ..storage.memory import InMemoryUtilityStore
from ..storage.store import SqlUtilityStore
from ..utils.logging import setup_logging
from .middleware import RequestLoggingMiddleware
from .routes import health, ingest, reports, summary


async def ingestion_error_handler(request: Request, exc: IngestionError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    return JSONResponse(
        status_code=400,
        content={"error": "validation", "detail": f"{location}: {first.get('msg', 'invalid request')}"},
    )


def create_app(
    settings: Settings | None = None,
    *,
    store: UtilityStore | None = None,
    service: IngestionService | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    *store* / *service* are injected by tests; otherwise the store follows
    ``settings.storage_backend``.
    """
    if settings is None:
        settings = Settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        owns_engine = False
        if app.state.service is None:
            backend = store
            if backend is None and settings.storage_backend == "database":
                backend = SqlUtilityStore(init_db(settings.database_url.get_secret_value()))
                owns_engine = True
            elif backend is None:
                backend = InMemoryUtilityStore()
            app.state.service = IngestionService(backend, settings)
        yield
        # Shutdown
        if owns_engine:
            await close_db()

    app = FastAPI(
        title="Utility Ingestion API",
        description="Utility meter reading ingestion, reconciliation and cost estimation",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(IngestionError, ingestion_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.state.settings = settings
    app.state.service = service

    app.include_router(health.router, tags=["health"])
    app.include_router(ingest.router, prefix="/energy/ingest", tags=["ingest"])
    app.include_router(reports.router, prefix="/energy", tags=["reports"])
    app.include_router(summary.router, prefix="/energy", tags=["summary"])

    return app
