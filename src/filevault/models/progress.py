"""Upload progress data models."""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class UploadStatus(str, Enum):
    """Upload status enumeration."""

    UPLOADING = "uploading"
    COMPLETED = "completed"  # terminal
    FAILED = "failed"  # terminal

    @property
    def is_terminal(self) -> bool:
        return self is not UploadStatus.UPLOADING


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_progress(uploaded_bytes: int, file_size: Optional[int]) -> float:
    """Percentage of ``file_size`` uploaded, 0 when the size is unknown."""
    if not file_size or file_size <= 0:
        return 0.0
    return min(uploaded_bytes / file_size * 100, 100.0)


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class UploadProgress(CamelModel):
    """Durable record of one in-flight upload."""

    upload_id: str
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    uploaded_bytes: int = 0
    progress: float = 0.0
    status: UploadStatus = UploadStatus.UPLOADING
    updated_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at


def merge_progress(
    existing: Optional[UploadProgress],
    upload_id: str,
    fields: Dict[str, Any],
    ttl_seconds: int,
    now: Optional[datetime] = None,
) -> UploadProgress:
    """Apply an upsert to a progress record.

    The first terminal status sticks for good and ``uploaded_bytes``
    never decreases. ``progress`` is always recomputed from the byte counts,
    and ``updated_at``/``expires_at`` are refreshed on every write.
    """
    now = now or utcnow()
    data = existing.model_dump() if existing else {"upload_id": upload_id}

    for key, value in fields.items():
        if value is None and key in ("file_name", "file_size"):
            continue
        data[key] = value

    status = UploadStatus(data.get("status", UploadStatus.UPLOADING))
    if existing is not None and existing.is_terminal:
        status = existing.status
    data["status"] = status

    uploaded = int(data.get("uploaded_bytes") or 0)
    if existing is not None:
        uploaded = max(uploaded, existing.uploaded_bytes)
    data["uploaded_bytes"] = uploaded

    if status is UploadStatus.COMPLETED:
        data["progress"] = 100.0
    else:
        data["progress"] = compute_progress(uploaded, data.get("file_size"))

    data["updated_at"] = now
    data["expires_at"] = now + timedelta(seconds=ttl_seconds)
    return UploadProgress(**data)
