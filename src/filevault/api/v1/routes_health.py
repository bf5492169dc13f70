"""Health check endpoint for FileVault."""

from fastapi import APIRouter, Depends

from filevault.api.v1.deps import ServiceContainer, get_services

router = APIRouter()


@router.get("/health")
async def health_check(services: ServiceContainer = Depends(get_services)) -> dict:
    """Return service status, name and version.

    Does not touch any backend so it stays fast during startup.
    """
    return {
        "status": "ok",
        "service": services.settings.SERVICE_NAME,
        "version": services.settings.SERVICE_VERSION,
    }
