"""Message queue factory."""

from filevault.core.config import Settings
from filevault.messaging.base import MessageQueue
from filevault.messaging.memory import MemoryQueue


def get_message_queue(settings: Settings) -> MessageQueue:
    """Build the queue selected by QUEUE_BACKEND.

    Raises:
        ValueError: If the backend name is unknown or SQS is missing its URL
    """
    backend = settings.QUEUE_BACKEND
    if backend == "memory":
        return MemoryQueue(max_depth=settings.MEMORY_QUEUE_MAX_DEPTH)
    if backend == "sqs":
        from filevault.messaging.sqs import SQSQueue, create_sqs_client

        if not settings.SQS_PROGRESS_EVENTS_URL:
            raise ValueError("SQS_PROGRESS_EVENTS_URL not configured")
        client = create_sqs_client(
            settings.AWS_REGION,
            settings.SQS_ACCESS_KEY_ID,
            settings.SQS_SECRET_ACCESS_KEY,
        )
        return SQSQueue(client)
    raise ValueError(f"Unknown QUEUE_BACKEND: {backend}")
