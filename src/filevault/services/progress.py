"""Progress reporting for a single in-flight upload."""

import asyncio
import logging
from typing import Optional

from filevault.core.background import best_effort
from filevault.messaging.base import MessageQueue
from filevault.models.events import EventType, ProgressEvent
from filevault.models.progress import UploadStatus, compute_progress
from filevault.services.throttle import throttle
from filevault.storage.progress_store import ProgressStore

logger = logging.getLogger(__name__)


class ProgressReporter:
    """Persist and publish the progress of one upload.

    Byte counts come in through :meth:`advance` and are reported through a
    trailing-edge throttle. Every report upserts the progress record and
    publishes a :class:`ProgressEvent`, both best-effort: failures are
    logged and never reach the transfer.

    Reports are serialised by a lock and the first terminal write flips
    ``terminal``; throttled reports that run afterwards are dropped, so a
    stale ``uploading`` write can never land after ``completed``/``failed``.
    """

    def __init__(
        self,
        upload_id: str,
        store: ProgressStore,
        queue: MessageQueue,
        queue_name: str,
        throttle_ms: int = 500,
    ):
        self.upload_id = upload_id
        self.store = store
        self.queue = queue
        self.queue_name = queue_name
        self.file_name: Optional[str] = None
        self.file_size: Optional[int] = None
        self.uploaded_bytes = 0
        self.terminal = False
        self.started = False
        self._lock = asyncio.Lock()
        self._throttled = throttle(self._report, throttle_ms)

    async def start(self, file_name: Optional[str] = None, file_size: Optional[int] = None) -> None:
        """Create the progress record with whatever metadata is known.

        Safe to call more than once; later calls only fill in metadata.
        """
        if file_name:
            self.file_name = file_name
        if file_size is not None:
            self.file_size = file_size
        async with self._lock:
            if self.terminal:
                return
            self.started = True
            await self._write(UploadStatus.UPLOADING, self.uploaded_bytes)

    def advance(self, nbytes: int) -> None:
        """Account for ``nbytes`` more bytes and schedule a throttled report."""
        if nbytes <= 0 or self.terminal:
            return
        self.uploaded_bytes += nbytes
        self._throttled(self.uploaded_bytes)

    async def _report(self, uploaded_bytes: int) -> None:
        async with self._lock:
            if self.terminal:
                return
            if self.file_size and uploaded_bytes >= self.file_size:
                # 100% is only reported once the blob store has the object
                return
            await self._write(UploadStatus.UPLOADING, uploaded_bytes)

    async def complete(self, total_bytes: int) -> None:
        """Issue the final, unthrottled ``completed`` write."""
        async with self._lock:
            if self.terminal:
                return
            self.terminal = True
            self._throttled.cancel()
            self.uploaded_bytes = max(self.uploaded_bytes, total_bytes)
            if not self.file_size:
                self.file_size = total_bytes
            await self._write(UploadStatus.COMPLETED, self.uploaded_bytes)

    async def fail(self, reason: str = "") -> None:
        """Issue the final, unthrottled ``failed`` write."""
        async with self._lock:
            if self.terminal:
                return
            self.terminal = True
            self._throttled.cancel()
            logger.info(
                f"Upload failed: upload_id={self.upload_id}, reason={reason}",
                extra={"uploaded_bytes": self.uploaded_bytes},
            )
            await self._write(UploadStatus.FAILED, self.uploaded_bytes)

    async def close(self) -> None:
        """Drop pending throttled reports and wait for in-flight ones."""
        self._throttled.cancel()
        await self._throttled.drain()

    def _event(self, status: UploadStatus, uploaded_bytes: int) -> ProgressEvent:
        if status is UploadStatus.COMPLETED:
            event, progress = EventType.UPLOAD_COMPLETED, 100.0
        elif status is UploadStatus.FAILED:
            event, progress = EventType.UPLOAD_FAILED, compute_progress(uploaded_bytes, self.file_size)
        else:
            event, progress = EventType.UPLOAD_PROGRESS, compute_progress(uploaded_bytes, self.file_size)
        return ProgressEvent(
            event=event,
            upload_id=self.upload_id,
            status=status,
            progress=progress,
            uploaded_bytes=uploaded_bytes,
            file_size=self.file_size,
            file_name=self.file_name,
        )

    async def _write(self, status: UploadStatus, uploaded_bytes: int) -> None:
        await best_effort(
            self.store.upsert(
                self.upload_id,
                file_name=self.file_name,
                file_size=self.file_size,
                uploaded_bytes=uploaded_bytes,
                status=status,
            ),
            "progress store write",
            upload_id=self.upload_id,
        )
        await best_effort(
            self.queue.publish(self.queue_name, self._event(status, uploaded_bytes).to_wire()),
            "progress event publish",
            upload_id=self.upload_id,
        )
