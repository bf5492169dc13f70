"""Main application entrypoint for FileVault."""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from filevault.api.v1 import routes_health
from filevault.api.v1.routes_events import router as events_router
from filevault.api.v1.routes_files import router as files_router
from filevault.api.v1.routes_upload import router as upload_router
from filevault.core.config import settings
from filevault.core.exceptions import FileVaultError
from filevault.core.logging import setup_logging
from filevault.core.middleware import HTTPErrorLoggingMiddleware
from filevault.services.container import ServiceContainer

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    services: ServiceContainer = app.state.services
    await services.start()
    yield
    await services.shutdown()
    logger.info("Application shutdown completed")


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        container: Pre-built services, mainly for tests. Built from the
            environment settings when omitted.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    # Initialize logging first
    setup_logging()

    app = FastAPI(
        title=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.services = container or ServiceContainer.from_settings(settings)

    app.add_middleware(HTTPErrorLoggingMiddleware)

    @app.exception_handler(FileVaultError)
    async def filevault_error_handler(request: Request, e: FileVaultError) -> JSONResponse:
        return JSONResponse(
            status_code=e.status_code,
            content={"status": False, "message": e.message},
        )

    # Register routers
    app.include_router(routes_health.router, tags=["health"])
    app.include_router(upload_router)
    app.include_router(events_router)
    app.include_router(files_router)

    return app


# Export app instance for ASGI servers
app = create_app()
