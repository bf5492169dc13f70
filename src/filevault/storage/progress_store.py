"""Upload progress record stores."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError
from redis.exceptions import RedisError, WatchError

from filevault.core.exceptions import ProgressStoreError
from filevault.models.progress import UploadProgress, merge_progress, utcnow

logger = logging.getLogger(__name__)


class ProgressStore(ABC):
    """Keyed store of :class:`UploadProgress` records with TTL expiry.

    Writes are upserts merged with :func:`merge_progress`, so a record is
    never duplicated, never leaves a terminal status and never reports fewer
    uploaded bytes than before.
    """

    def __init__(self, ttl_seconds: int = 3600):
        self.ttl_seconds = ttl_seconds

    @abstractmethod
    async def upsert(self, upload_id: str, **fields: Any) -> UploadProgress:
        pass

    @abstractmethod
    async def get(self, upload_id: str) -> Optional[UploadProgress]:
        pass

    @abstractmethod
    async def delete(self, upload_id: str) -> None:
        pass

    async def close(self) -> None:
        pass


class MemoryProgressStore(ProgressStore):
    """In-process progress store.

    Expired records are dropped when read, and every write sweeps the whole
    store at most once per ``purge_interval_seconds``.
    """

    def __init__(
        self,
        ttl_seconds: int = 3600,
        clock: Callable[[], datetime] = utcnow,
        purge_interval_seconds: int = 60,
    ):
        super().__init__(ttl_seconds)
        self._clock = clock
        self._records: Dict[str, UploadProgress] = {}
        self._purge_interval = timedelta(seconds=purge_interval_seconds)
        self._last_purge: Optional[datetime] = None

    async def upsert(self, upload_id: str, **fields: Any) -> UploadProgress:
        now = self._clock()
        if self._last_purge is None or now - self._last_purge >= self._purge_interval:
            purged = self.purge_expired()
            if purged:
                logger.debug(f"Purged {purged} expired progress records")
        existing = await self.get(upload_id)
        record = merge_progress(existing, upload_id, fields, self.ttl_seconds, now=now)
        self._records[upload_id] = record
        return record

    async def get(self, upload_id: str) -> Optional[UploadProgress]:
        record = self._records.get(upload_id)
        if record is not None and record.is_expired(self._clock()):
            del self._records[upload_id]
            return None
        return record

    async def delete(self, upload_id: str) -> None:
        self._records.pop(upload_id, None)

    def purge_expired(self) -> int:
        """Drop every expired record and return how many were removed."""
        now = self._clock()
        self._last_purge = now
        expired = [key for key, record in self._records.items() if record.is_expired(now)]
        for key in expired:
            del self._records[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._records)


class RedisProgressStore(ProgressStore):
    """Redis-backed progress store.

    Records are JSON strings under ``upload-progress:<id>`` with a Redis TTL
    refreshed on every write. Upserts run in a WATCH/MULTI transaction so
    concurrent writers cannot interleave a read-merge-write.
    """

    KEY_PREFIX = "upload-progress:"

    def __init__(self, client: Any, ttl_seconds: int = 3600):
        super().__init__(ttl_seconds)
        self._redis = client

    def _key(self, upload_id: str) -> str:
        return f"{self.KEY_PREFIX}{upload_id}"

    @staticmethod
    def _decode(raw: Optional[str]) -> Optional[UploadProgress]:
        if raw is None:
            return None
        try:
            return UploadProgress.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable progress record: {e}")
            return None

    async def upsert(self, upload_id: str, **fields: Any) -> UploadProgress:
        key = self._key(upload_id)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(key)
                        existing = self._decode(await pipe.get(key))
                        record = merge_progress(existing, upload_id, fields, self.ttl_seconds)
                        pipe.multi()
                        pipe.set(key, record.model_dump_json(), ex=self.ttl_seconds)
                        await pipe.execute()
                        return record
                    except WatchError:
                        logger.debug(f"Concurrent progress write for {upload_id}, retrying")
                        continue
        except RedisError as e:
            raise ProgressStoreError(f"Failed to upsert progress for {upload_id}: {e}") from e

    async def get(self, upload_id: str) -> Optional[UploadProgress]:
        try:
            raw = await self._redis.get(self._key(upload_id))
        except RedisError as e:
            raise ProgressStoreError(f"Failed to read progress for {upload_id}: {e}") from e
        return self._decode(raw)

    async def delete(self, upload_id: str) -> None:
        try:
            await self._redis.delete(self._key(upload_id))
        except RedisError as e:
            raise ProgressStoreError(f"Failed to delete progress for {upload_id}: {e}") from e

    async def close(self) -> None:
        await self._redis.aclose()
