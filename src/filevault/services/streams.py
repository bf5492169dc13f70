"""Server-sent event streams for upload progress.

Two strategies feed ``GET /events/upload/{upload_id}``:

- ``queue_event_stream``: subscribes to the :class:`SubscriberRegistry`,
  which the progress consumer feeds from the queue. Works across instances.
- ``polling_event_stream``: polls the progress store directly. Used when the
  queue consumer is disabled.

Both yield dicts understood by ``sse_starlette`` and end cleanly when the
client goes away; nothing outlives the generator.
"""

import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from filevault.core.background import best_effort
from filevault.models.events import ProgressEvent, epoch_millis
from filevault.services.subscribers import SubscriberRegistry, Subscription
from filevault.storage.progress_store import ProgressStore

logger = logging.getLogger(__name__)

DisconnectCheck = Callable[[], Awaitable[bool]]


def data_frame(payload: Dict[str, Any], event: Optional[str] = None) -> Dict[str, str]:
    frame = {"data": json.dumps(payload, default=str)}
    if event:
        frame["event"] = event
    return frame


def connected_frame(upload_id: str) -> Dict[str, str]:
    return data_frame({"uploadId": upload_id, "status": "uploading", "progress": 0}, event="connected")


def ping_frame() -> Dict[str, str]:
    return data_frame({"t": epoch_millis()}, event="ping")


def timeout_frame(upload_id: str) -> Dict[str, str]:
    return data_frame({"uploadId": upload_id, "status": "uploading", "progress": 0}, event="timeout")


async def queue_event_stream(
    upload_id: str,
    registry: SubscriberRegistry,
    is_disconnected: DisconnectCheck,
    heartbeat_seconds: float = 10.0,
    clock: Callable[[], float] = time.monotonic,
) -> AsyncIterator[Dict[str, str]]:
    """Stream events fanned out by the registry until a terminal event.

    A ping goes out every ``heartbeat_seconds`` whether or not events are
    flowing.
    """
    subscription = Subscription(upload_id)
    unsubscribe = registry.subscribe(upload_id, subscription)
    logger.info(f"Event stream opened for upload {upload_id}")
    next_heartbeat = clock() + heartbeat_seconds
    try:
        yield connected_frame(upload_id)
        while not await is_disconnected():
            remaining = next_heartbeat - clock()
            if remaining <= 0:
                next_heartbeat = clock() + heartbeat_seconds
                yield ping_frame()
                continue
            try:
                event = await subscription.receive(timeout=remaining)
            except asyncio.TimeoutError:
                continue
            if event is None:
                break
            yield data_frame(event)
    finally:
        subscription.close()
        unsubscribe()
        logger.info(f"Event stream closed for upload {upload_id}")


async def polling_event_stream(
    upload_id: str,
    store: ProgressStore,
    is_disconnected: DisconnectCheck,
    poll_interval: float = 1.0,
    heartbeat_seconds: float = 10.0,
    record_wait_seconds: float = 15.0,
    clock: Callable[[], float] = time.monotonic,
) -> AsyncIterator[Dict[str, str]]:
    """Stream progress by polling the store.

    Sends a frame whenever the record changes. On a terminal record the
    final frame is sent, the record is deleted and the stream ends. If no
    record shows up within ``record_wait_seconds`` a single ``timeout`` frame
    is sent and the stream stays open for the client to close.
    """
    started = clock()
    last_heartbeat = started
    last_seen = None
    timed_out = False

    yield connected_frame(upload_id)
    while not await is_disconnected():
        try:
            record = await store.get(upload_id)
        except Exception as e:
            logger.error(f"Progress lookup failed for upload {upload_id}, closing stream: {e}")
            return

        if record is not None:
            snapshot = (record.status, record.uploaded_bytes, record.file_size)
            if snapshot != last_seen:
                last_seen = snapshot
                yield data_frame(ProgressEvent.from_record(record).to_wire())
            if record.is_terminal:
                await best_effort(store.delete(upload_id), "progress record cleanup", upload_id=upload_id)
                return
        elif not timed_out and clock() - started > record_wait_seconds:
            timed_out = True
            yield timeout_frame(upload_id)

        now = clock()
        if now - last_heartbeat >= heartbeat_seconds:
            last_heartbeat = now
            yield ping_frame()

        await asyncio.sleep(poll_interval)
