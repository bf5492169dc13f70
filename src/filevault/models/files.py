"""File metadata and upload API models."""

from datetime import datetime
from typing import Optional

from pydantic import Field

from filevault.models.progress import CamelModel, UploadProgress, utcnow

ROOT_FOLDER_ID = "root"


class FileRecord(CamelModel):
    """Durable metadata for an uploaded file."""

    id: str
    name: str
    original_name: str
    mime_type: str
    file_size: int
    storage_key: str
    url: str
    folder_id: str = ROOT_FOLDER_ID
    upload_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class UploadResponse(CamelModel):
    """Response model for a completed upload."""

    upload_id: str
    file: FileRecord


class InitUploadRequest(CamelModel):
    """Request model for starting an upload session ahead of the transfer."""

    upload_id: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = Field(default=None, ge=0)


class InitUploadResponse(CamelModel):
    upload_id: str
    progress: UploadProgress
