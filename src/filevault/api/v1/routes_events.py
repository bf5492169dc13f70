"""Server-sent event routes for upload progress."""

import logging

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from filevault.api.v1.deps import ServiceContainer, get_services
from filevault.services.streams import polling_event_stream, queue_event_stream

router = APIRouter(tags=["events"])
logger = logging.getLogger(__name__)


@router.get("/events/upload/{upload_id}")
async def upload_events(
    upload_id: str, request: Request, services: ServiceContainer = Depends(get_services)
) -> EventSourceResponse:
    """Open an event stream for one upload.

    Sends a ``connected`` frame, then one ``data`` frame per progress update
    until the upload reaches a terminal state.
    """
    settings = services.settings
    if settings.PROGRESS_STREAM_MODE == "poll":
        events = polling_event_stream(
            upload_id,
            services.progress_store,
            request.is_disconnected,
            poll_interval=settings.SSE_POLL_INTERVAL_SECONDS,
            heartbeat_seconds=settings.SSE_HEARTBEAT_SECONDS,
            record_wait_seconds=settings.SSE_RECORD_WAIT_SECONDS,
        )
    else:
        events = queue_event_stream(
            upload_id,
            services.registry,
            request.is_disconnected,
            heartbeat_seconds=settings.SSE_HEARTBEAT_SECONDS,
        )
    return EventSourceResponse(events, headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"})
