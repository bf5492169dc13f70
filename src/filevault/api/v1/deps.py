from fastapi import Request

from filevault.services.container import ServiceContainer

__all__ = ["ServiceContainer", "get_services"]


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services
