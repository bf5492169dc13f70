"""Process-wide service wiring."""

import logging
from dataclasses import dataclass, field
from typing import List

from filevault.core.config import Settings
from filevault.messaging.base import MessageQueue
from filevault.messaging.factory import get_message_queue
from filevault.models.events import FileEvent, FolderEvent, ProgressEvent
from filevault.services.consumer import QueueConsumer
from filevault.services.ingest import UploadIngestPipeline
from filevault.services.subscribers import SubscriberRegistry
from filevault.storage.base import BlobStore
from filevault.storage.factory import get_blob_store, get_progress_store
from filevault.storage.file_store import FileStore
from filevault.storage.progress_store import ProgressStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Collaborators shared by every request in this process.

    Built once at startup and stored on ``app.state.services``.
    """

    settings: Settings
    blob_store: BlobStore
    progress_store: ProgressStore
    queue: MessageQueue
    file_store: FileStore = field(default_factory=FileStore)
    registry: SubscriberRegistry = field(default_factory=SubscriberRegistry)
    consumers: List[QueueConsumer] = field(default_factory=list)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceContainer":
        container = cls(
            settings=settings,
            blob_store=get_blob_store(settings),
            progress_store=get_progress_store(settings),
            queue=get_message_queue(settings),
        )
        container.configure_consumers()
        return container

    @property
    def pipeline(self) -> UploadIngestPipeline:
        return UploadIngestPipeline(
            self.settings, self.blob_store, self.progress_store, self.queue, self.file_store
        )

    def _consumer(self, queue_name: str, kind: str, handler) -> QueueConsumer:
        return QueueConsumer(
            self.queue,
            queue_name,
            kind,
            handler,
            max_messages=self.settings.QUEUE_MAX_MESSAGES,
            wait_seconds=self.settings.QUEUE_WAIT_SECONDS,
            visibility_timeout=self.settings.QUEUE_VISIBILITY_TIMEOUT,
            error_backoff_seconds=self.settings.QUEUE_ERROR_BACKOFF_SECONDS,
        )

    def configure_consumers(self) -> None:
        settings = self.settings
        self.consumers = []
        if settings.PROGRESS_CONSUMER_ENABLED:
            self.consumers.append(self._consumer(settings.progress_queue, "progress", self.fan_out))
        if settings.LIFECYCLE_CONSUMER_ENABLED:
            if settings.file_events_queue:
                self.consumers.append(self._consumer(settings.file_events_queue, "file", log_file_event))
            if settings.folder_events_queue:
                self.consumers.append(
                    self._consumer(settings.folder_events_queue, "folder", log_folder_event)
                )

    def fan_out(self, event: ProgressEvent) -> int:
        """Deliver a progress event to local event-stream subscribers."""
        return self.registry.emit(event.upload_id, event.to_wire())

    async def start(self) -> None:
        for consumer in self.consumers:
            consumer.start()
        logger.info(
            "Services started",
            extra={
                "storage_backend": self.blob_store.get_backend_name(),
                "consumers": [c.kind for c in self.consumers],
            },
        )

    async def shutdown(self) -> None:
        for consumer in self.consumers:
            await consumer.stop()
        await self.queue.close()
        await self.progress_store.close()
        logger.info("Services stopped")


def log_file_event(event: FileEvent) -> None:
    logger.info(
        f"File event {event.event.value}: file_id={event.file_id}",
        extra={"folder_id": event.folder_id, "file_name": event.name},
    )


def log_folder_event(event: FolderEvent) -> None:
    folder = event.root_folder_id or event.folder_id
    logger.info(
        f"Folder event {event.event.value}: folder_id={folder}",
        extra={"deleted_folder_ids": event.deleted_folder_ids},
    )
