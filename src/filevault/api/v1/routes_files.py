"""File metadata routes."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Response

from filevault.api.v1.deps import ServiceContainer, get_services
from filevault.core.exceptions import FileVaultError, NotFound, StorageError
from filevault.models.events import EventType
from filevault.models.files import FileRecord

router = APIRouter(prefix="/files", tags=["files"])
logger = logging.getLogger(__name__)


@router.get("", response_model=List[FileRecord], response_model_by_alias=True)
async def list_files(
    folder_id: Optional[str] = None, services: ServiceContainer = Depends(get_services)
) -> List[FileRecord]:
    return services.file_store.list_all(folder_id)


@router.get("/{file_id}", response_model=FileRecord, response_model_by_alias=True)
async def get_file(file_id: str, services: ServiceContainer = Depends(get_services)) -> FileRecord:
    record = services.file_store.get(file_id)
    if record is None:
        raise NotFound(f"File {file_id} not found")
    return record


@router.delete("/{file_id}", status_code=204)
async def delete_file(file_id: str, services: ServiceContainer = Depends(get_services)) -> Response:
    """Delete a file's blob (if still present) and its metadata record."""
    record = services.file_store.get(file_id)
    if record is None:
        raise NotFound(f"File {file_id} not found")

    try:
        present = await services.blob_store.exists(record.storage_key)
        if present:
            await services.blob_store.delete(record.storage_key)
    except StorageError as e:
        logger.error(f"Failed to delete blob for file {file_id}: {e}")
        raise FileVaultError("Failed to delete file from storage") from e
    if not present:
        logger.warning(f"Blob already missing for file {file_id}", extra={"storage_key": record.storage_key})

    services.file_store.delete(file_id)
    await services.pipeline.publish_file_event(EventType.FILE_DELETED, record)
    logger.info(f"File deleted: file_id={file_id}")
    return Response(status_code=204)
