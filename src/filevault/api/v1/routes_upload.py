"""Upload API routes."""

import logging
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Body, Depends, Request

from filevault.api.v1.deps import ServiceContainer, get_services
from filevault.core.exceptions import NotFound
from filevault.core.logging import upload_id_context
from filevault.models.files import InitUploadRequest, InitUploadResponse, UploadResponse
from filevault.models.progress import UploadProgress

router = APIRouter(tags=["upload"])
logger = logging.getLogger(__name__)


@router.post("/upload", response_model=UploadResponse, response_model_by_alias=True, status_code=201)
async def upload_file(
    request: Request, services: ServiceContainer = Depends(get_services)
) -> UploadResponse:
    """Stream a multipart file upload into the blob store.

    The upload id comes from the ``uploadId`` form field, the ``x-upload-id``
    header or the ``uploadId`` query parameter, in that order. Progress is
    published while the body is read.
    """
    return await services.pipeline.ingest(request)


@router.post(
    "/upload/init", response_model=InitUploadResponse, response_model_by_alias=True, status_code=201
)
async def init_upload(
    payload: Optional[InitUploadRequest] = Body(default=None),
    services: ServiceContainer = Depends(get_services),
) -> InitUploadResponse:
    """Create the progress record ahead of the transfer.

    Lets a client open the event stream before it starts sending bytes.
    Calling it again for the same id only fills in metadata.
    """
    payload = payload or InitUploadRequest()
    upload_id = payload.upload_id or str(uuid4())
    upload_id_context.set(upload_id)

    reporter = services.pipeline.new_reporter(upload_id)
    try:
        await reporter.start(payload.file_name, payload.file_size)
    finally:
        await reporter.close()

    progress = await services.progress_store.get(upload_id)
    if progress is None:
        # Store write is best-effort; answer with what was requested
        progress = UploadProgress(
            upload_id=upload_id,
            file_name=payload.file_name,
            file_size=payload.file_size,
        )
    logger.info(f"Upload initialised: upload_id={upload_id}")
    return InitUploadResponse(upload_id=upload_id, progress=progress)


@router.get(
    "/upload/{upload_id}/progress", response_model=UploadProgress, response_model_by_alias=True
)
async def get_upload_progress(
    upload_id: str, services: ServiceContainer = Depends(get_services)
) -> UploadProgress:
    """Return the stored progress record for an upload."""
    progress = await services.progress_store.get(upload_id)
    if progress is None:
        raise NotFound(f"No progress record for upload {upload_id}")
    return progress
