"""Google Cloud Storage blob store."""

import asyncio
import logging
from typing import AsyncIterator, Optional

from google.api_core import exceptions as gcs_exceptions
from google.cloud import storage

from filevault.core.exceptions import StorageError
from filevault.storage.base import BlobStore, StoredObject

logger = logging.getLogger(__name__)

# Resumable upload chunk size, must be a multiple of 256 KB
GCS_CHUNK_SIZE = 8 * 1024 * 1024


class GCSBlobStore(BlobStore):
    """Google Cloud Storage blob store using resumable uploads."""

    def __init__(self, bucket_name: str, project_id: str = ""):
        self.bucket_name = bucket_name
        self.project_id = project_id
        self._client: Optional[storage.Client] = None
        self._bucket: Optional[storage.Bucket] = None

    def _get_bucket(self) -> storage.Bucket:
        """Lazy-load and cache GCS bucket."""
        if self._bucket is None:
            if not self.bucket_name:
                raise ValueError("GCS_BUCKET_NAME not configured")

            self._client = storage.Client(project=self.project_id or None)
            self._bucket = self._client.bucket(self.bucket_name)

        return self._bucket

    async def put_stream(
        self, key: str, chunks: AsyncIterator[bytes], content_type: str
    ) -> StoredObject:
        """Upload to GCS through a resumable session.

        The writer is only closed (which finalizes the object) after the
        stream ends, so an aborted stream leaves no object behind.
        """
        blob = self._get_bucket().blob(key)
        writer = await asyncio.to_thread(
            blob.open, "wb", content_type=content_type, chunk_size=GCS_CHUNK_SIZE
        )

        written = 0
        try:
            async for chunk in chunks:
                await asyncio.to_thread(writer.write, chunk)
                written += len(chunk)
            await asyncio.to_thread(writer.close)
        except gcs_exceptions.GoogleAPIError as e:
            raise StorageError(f"GCS upload failed for {key}: {e}") from e

        return StoredObject(
            storage_key=key,
            public_url=self.public_url(key),
            bytes_written=written,
        )

    async def delete(self, key: str) -> None:
        blob = self._get_bucket().blob(key)
        try:
            await asyncio.to_thread(blob.delete)
        except gcs_exceptions.NotFound:
            logger.debug(f"GCS object already gone: {key}")
        except gcs_exceptions.GoogleAPIError as e:
            raise StorageError(f"GCS delete failed for {key}: {e}") from e

    async def exists(self, key: str) -> bool:
        blob = self._get_bucket().blob(key)
        try:
            return await asyncio.to_thread(blob.exists)
        except gcs_exceptions.GoogleAPIError as e:
            raise StorageError(f"GCS lookup failed for {key}: {e}") from e

    def public_url(self, key: str) -> str:
        return f"https://storage.googleapis.com/{self.bucket_name}/{key}"

    def get_backend_name(self) -> str:
        return "gcs"
