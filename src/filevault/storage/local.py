"""Local filesystem blob store."""

import asyncio
import os
from pathlib import Path
from typing import AsyncIterator

from filevault.core.exceptions import StorageError
from filevault.storage.base import BlobStore, StoredObject


class LocalBlobStore(BlobStore):
    """Local filesystem blob store.

    Objects are written to ``<key>.part`` and renamed into place once the
    stream ends, so readers never see a half-written file.
    """

    def __init__(self, base_path: str = "data/uploads", public_base_url: str = ""):
        self.base_path = Path(base_path)
        self.public_base_url = public_base_url.rstrip("/")

    def _path(self, key: str) -> Path:
        path = (self.base_path / key).resolve()
        if self.base_path.resolve() not in path.parents:
            raise StorageError(f"Key escapes storage root: {key}")
        return path

    async def put_stream(
        self, key: str, chunks: AsyncIterator[bytes], content_type: str
    ) -> StoredObject:
        target_path = self._path(key)
        partial_path = target_path.with_name(target_path.name + ".part")
        target_path.parent.mkdir(parents=True, exist_ok=True)

        written = 0
        try:
            with open(partial_path, "wb") as f:
                async for chunk in chunks:
                    f.write(chunk)
                    written += len(chunk)
            os.replace(partial_path, target_path)
        except BaseException:
            partial_path.unlink(missing_ok=True)
            raise

        return StoredObject(
            storage_key=key,
            public_url=self.public_url(key),
            bytes_written=written,
        )

    async def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path(key).is_file)

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return self._path(key).as_uri()

    def get_backend_name(self) -> str:
        return "local"
