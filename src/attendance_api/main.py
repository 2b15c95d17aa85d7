"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from attendance_api import __version__
from attendance_api.config import Settings, get_settings
from attendance_api.database import get_engine, get_session_maker
from attendance_api.exceptions import AttendanceAPIError
from attendance_api.middleware.error_handler import (
    domain_exception_handler,
    generic_exception_handler,
    http_exception_handler,
    sqlalchemy_exception_handler,
    validation_exception_handler,
)
from attendance_api.providers.teamoffice import TeamOfficeProvider
from attendance_api.repositories.gateway import SqlPersistenceGateway
from attendance_api.routers import mappings, sync
from attendance_api.services.sync_orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


def build_orchestrator(settings: Settings) -> SyncOrchestrator:
    """Wire the orchestrator to the database and the TeamOffice client."""
    gateway = SqlPersistenceGateway(get_session_maker(), engine=get_engine())
    provider = TeamOfficeProvider.from_settings(settings)
    return SyncOrchestrator(provider, gateway, settings)


def create_app(orchestrator: SyncOrchestrator | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        orchestrator: Pre-built orchestrator; one backed by the configured
            database is built at start-up when omitted
    """
    config = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        instance = orchestrator or build_orchestrator(config)
        await instance.start()
        app.state.orchestrator = instance
        yield
        await instance.stop()
        app.state.orchestrator = None
        if orchestrator is None:
            await get_engine().dispose()

    app = FastAPI(
        title=config.app_name,
        version=__version__,
        description="Biometric attendance reconciliation API",
        lifespan=lifespan,
        docs_url="/docs" if config.debug else None,
        redoc_url="/redoc" if config.debug else None,
    )

    # Sanitized error handlers to prevent information disclosure
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(AttendanceAPIError, domain_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(sync.router, prefix="/api/sync", tags=["Sync"])
    app.include_router(mappings.router, prefix="/api/mappings", tags=["Mappings"])

    @app.get("/api/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()
