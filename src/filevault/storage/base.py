"""Abstract blob store interface."""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator


@dataclass
class StoredObject:
    """Result of a completed blob upload."""

    storage_key: str
    public_url: str
    bytes_written: int


class BlobStore(ABC):
    """Abstract base class for blob store backends.

    Uploads consume an async iterator of byte chunks so that a backend never
    needs the whole payload in memory. If the iterator raises, or the task
    running ``put_stream`` is cancelled, the backend must not leave a
    finished object behind.
    """

    def build_key(self, upload_id: str, file_name: str, folder_id: str) -> str:
        """Generate the object key for an upload.

        Args:
            upload_id: Upload identifier, keeps keys unique
            file_name: Original file name
            folder_id: Folder the file is filed under

        Returns:
            Object key relative to the backend root
        """
        folder = self._sanitize_filename(folder_id)
        return f"files/{folder}/{self._sanitize_filename(upload_id)}-{self._sanitize_filename(file_name)}"

    @abstractmethod
    async def put_stream(
        self, key: str, chunks: AsyncIterator[bytes], content_type: str
    ) -> StoredObject:
        """Stream an object into the backend.

        Args:
            key: Object key
            chunks: Async iterator yielding the object's bytes in order
            content_type: MIME type

        Returns:
            Stored object details
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete an object; missing objects are not an error."""
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Map an object key to its retrieval URL."""
        pass

    @abstractmethod
    def get_backend_name(self) -> str:
        """Return backend identifier."""
        pass

    @staticmethod
    def _sanitize_filename(filename: str) -> str:
        """Remove path traversal and dangerous characters."""
        safe = filename.replace("../", "").replace("..\\", "")
        safe = safe.replace("/", "_").replace("\\", "_")
        safe = re.sub(r"[^a-zA-Z0-9._-]", "_", safe)
        return safe[:255] or "unnamed"
