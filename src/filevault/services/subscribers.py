"""Event-stream subscriber registry."""

import asyncio
import logging
import threading
from typing import Any, Callable, Dict, Optional, Protocol, Set

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("completed", "failed")
TERMINAL_EVENT_NAMES = ("UPLOAD_COMPLETED", "UPLOAD_FAILED")


def is_terminal_payload(event: Dict[str, Any]) -> bool:
    """Whether a progress payload ends its upload."""
    return event.get("status") in TERMINAL_STATUSES or event.get("event") in TERMINAL_EVENT_NAMES


class ConnectionClosed(Exception):
    """Raised when writing to a connection that is already closed."""
    pass


class SubscriberConnection(Protocol):
    def send(self, event: Dict[str, Any]) -> None: ...

    def close(self) -> None: ...


class Subscription:
    """An open event-stream connection fed by the registry.

    The registry pushes payloads with :meth:`send`; the HTTP response drains
    them with :meth:`receive`. A subscriber that falls ``max_queued`` events
    behind is treated like a broken pipe.
    """

    def __init__(self, upload_id: str, max_queued: int = 256):
        self.upload_id = upload_id
        self._events: asyncio.Queue = asyncio.Queue(maxsize=max_queued)
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, event: Dict[str, Any]) -> None:
        if self.closed:
            raise ConnectionClosed(f"Subscription for {self.upload_id} is closed")
        try:
            self._events.put_nowait(event)
        except asyncio.QueueFull as e:
            raise ConnectionClosed(f"Subscriber for {self.upload_id} is not keeping up") from e

    def close(self) -> None:
        self._closed.set()

    async def receive(self, timeout: float) -> Optional[Dict[str, Any]]:
        """Wait for the next payload.

        Payloads sent before :meth:`close` are still delivered.

        Returns:
            The next payload, or None once the connection is closed and drained

        Raises:
            asyncio.TimeoutError: If nothing arrived within ``timeout`` seconds
        """
        if not self._events.empty():
            return self._events.get_nowait()
        if self.closed:
            return None

        getter = asyncio.ensure_future(self._events.get())
        closer = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait(
                {getter, closer}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            getter.cancel()
            closer.cancel()

        if getter in done:
            return getter.result()
        if closer in done:
            return None
        raise asyncio.TimeoutError


class SubscriberRegistry:
    """Process-wide map of upload id to open event-stream connections.

    One instance is created at startup and injected where needed. Entries
    appear on first subscribe and disappear when their last connection goes.
    All mutation happens under a lock, so the registry is also safe to use
    from threadpool handlers.
    """

    def __init__(self):
        self._subscribers: Dict[str, Set[SubscriberConnection]] = {}
        self._lock = threading.Lock()

    def subscribe(self, upload_id: str, connection: SubscriberConnection) -> Callable[[], None]:
        """Register ``connection`` and return an idempotent unsubscribe callable."""
        with self._lock:
            self._subscribers.setdefault(upload_id, set()).add(connection)
            total = len(self._subscribers[upload_id])
        logger.debug(f"Subscribed to upload {upload_id}", extra={"subscribers": total})

        def unsubscribe() -> None:
            self._remove(upload_id, [connection])

        return unsubscribe

    def _remove(self, upload_id: str, connections: list) -> None:
        with self._lock:
            subscribers = self._subscribers.get(upload_id)
            if subscribers is None:
                return
            for connection in connections:
                subscribers.discard(connection)
            if not subscribers:
                del self._subscribers[upload_id]

    def emit(self, upload_id: str, event: Dict[str, Any]) -> int:
        """Deliver ``event`` to every connection subscribed to ``upload_id``.

        A failing connection is logged and dropped without affecting the
        others. After a terminal event every connection that received it is
        closed and removed.

        Returns:
            Number of connections the event was delivered to
        """
        with self._lock:
            connections = list(self._subscribers.get(upload_id, ()))
        if not connections:
            return 0

        terminal = is_terminal_payload(event)
        finished = []
        sent = 0
        for connection in connections:
            try:
                connection.send(event)
                sent += 1
            except Exception as e:
                logger.warning(
                    f"Dropping subscriber for upload {upload_id}: {e}",
                    extra={"error_type": type(e).__name__},
                )
                finished.append(connection)
                continue

            if terminal:
                try:
                    connection.close()
                except Exception as e:
                    logger.warning(f"Failed to close subscriber for upload {upload_id}: {e}")
                finished.append(connection)

        if finished:
            self._remove(upload_id, finished)

        logger.debug(
            f"Emitted {event.get('event') or event.get('status')} for upload {upload_id}",
            extra={"sent": sent, "remaining": self.subscriber_count(upload_id)},
        )
        return sent

    def subscriber_count(self, upload_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(upload_id, ()))

    def __contains__(self, upload_id: str) -> bool:
        with self._lock:
            return upload_id in self._subscribers
