"""Queue message schemas.

Every message read from a queue is validated against one of these models
before it is acted upon. Unknown keys are tolerated so producers can add
fields without breaking older consumers.
"""

import time
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from pydantic import ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from filevault.models.progress import CamelModel, UploadProgress, UploadStatus


def epoch_millis() -> int:
    return int(time.time() * 1000)


class EventType(str, Enum):
    UPLOAD_PROGRESS = "UPLOAD_PROGRESS"
    UPLOAD_COMPLETED = "UPLOAD_COMPLETED"
    UPLOAD_FAILED = "UPLOAD_FAILED"

    FILE_CREATED = "FILE_CREATED"
    FILE_DELETED = "FILE_DELETED"

    FOLDER_CREATED = "FOLDER_CREATED"
    FOLDER_UPDATED = "FOLDER_UPDATED"
    FOLDER_DELETED = "FOLDER_DELETED"
    FOLDER_TREE_DELETED = "FOLDER_TREE_DELETED"


PROGRESS_EVENTS = (EventType.UPLOAD_PROGRESS, EventType.UPLOAD_COMPLETED, EventType.UPLOAD_FAILED)
TERMINAL_EVENTS = (EventType.UPLOAD_COMPLETED, EventType.UPLOAD_FAILED)
FILE_EVENTS = (EventType.FILE_CREATED, EventType.FILE_DELETED)
FOLDER_EVENTS = (
    EventType.FOLDER_CREATED,
    EventType.FOLDER_UPDATED,
    EventType.FOLDER_DELETED,
    EventType.FOLDER_TREE_DELETED,
)


class QueueMessage(CamelModel):
    """Fields shared by every queue message."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    event: EventType
    at: int = Field(default_factory=epoch_millis)


class ProgressEvent(QueueMessage):
    """Upload progress or lifecycle event, carried over the queue and SSE."""

    upload_id: str = Field(min_length=1)
    status: UploadStatus
    progress: float = Field(default=0.0, ge=0, le=100)
    uploaded_bytes: int = Field(default=0, ge=0)
    file_size: Optional[int] = Field(default=None, ge=0)
    file_name: Optional[str] = None

    @model_validator(mode="after")
    def _check_kind(self) -> "ProgressEvent":
        if self.event not in PROGRESS_EVENTS:
            raise ValueError(f"{self.event.value} is not an upload progress event")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.event in TERMINAL_EVENTS or self.status.is_terminal

    @classmethod
    def from_record(cls, record: UploadProgress) -> "ProgressEvent":
        """Build the event describing the current state of ``record``."""
        if record.status is UploadStatus.COMPLETED:
            event = EventType.UPLOAD_COMPLETED
        elif record.status is UploadStatus.FAILED:
            event = EventType.UPLOAD_FAILED
        else:
            event = EventType.UPLOAD_PROGRESS
        return cls(
            event=event,
            upload_id=record.upload_id,
            status=record.status,
            progress=record.progress,
            uploaded_bytes=record.uploaded_bytes,
            file_size=record.file_size,
            file_name=record.file_name,
        )


class FileEvent(QueueMessage):
    """File lifecycle event."""

    file_id: str
    folder_id: Optional[str] = None
    name: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_kind(self) -> "FileEvent":
        if self.event not in FILE_EVENTS:
            raise ValueError(f"{self.event.value} is not a file event")
        return self


class FolderEvent(QueueMessage):
    """Folder lifecycle event."""

    folder_id: Optional[str] = None
    name: Optional[str] = None
    parent_id: Optional[str] = None
    root_folder_id: Optional[str] = None
    deleted_folder_ids: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_kind(self) -> "FolderEvent":
        if self.event not in FOLDER_EVENTS:
            raise ValueError(f"{self.event.value} is not a folder event")
        if self.event is EventType.FOLDER_TREE_DELETED:
            if not self.root_folder_id:
                raise ValueError("rootFolderId is required for FOLDER_TREE_DELETED")
        elif not self.folder_id:
            raise ValueError(f"folderId is required for {self.event.value}")
        return self


MESSAGE_SCHEMAS: Dict[str, Type[QueueMessage]] = {
    "progress": ProgressEvent,
    "file": FileEvent,
    "folder": FolderEvent,
}


def parse_message(kind: str, payload: Dict[str, Any]) -> QueueMessage:
    """Validate a decoded queue payload against the schema for ``kind``.

    Raises:
        KeyError: If ``kind`` has no schema
        pydantic.ValidationError: If the payload does not match
    """
    return MESSAGE_SCHEMAS[kind].model_validate(payload)
