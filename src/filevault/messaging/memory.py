"""In-process message queue."""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List

from filevault.messaging.base import Message, MessageQueue

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    message_id: str
    body: str
    visible_at: float = 0.0
    receipt_handle: str = ""
    receive_count: int = 0


class MemoryQueue(MessageQueue):
    """In-process queue with visibility timeout semantics.

    Suitable when the uploader and the event-stream subscribers share one
    process; multi-instance deployments need a shared queue such as SQS.

    Each queue holds at most ``max_depth`` unacknowledged messages. Publishing
    to a full queue drops the oldest messages, so a queue nobody consumes
    stays bounded.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, max_depth: int = 1000):
        self._clock = clock
        self.max_depth = max(max_depth, 1)
        self._queues: Dict[str, List[_Entry]] = {}
        self._events: Dict[str, asyncio.Event] = {}
        self._dropped: Dict[str, int] = {}

    def _entries(self, queue: str) -> List[_Entry]:
        return self._queues.setdefault(queue, [])

    def _event(self, queue: str) -> asyncio.Event:
        if queue not in self._events:
            self._events[queue] = asyncio.Event()
        return self._events[queue]

    async def publish(self, queue: str, payload: Dict[str, Any]) -> str:
        entry = _Entry(message_id=str(uuid.uuid4()), body=json.dumps(payload, default=str))
        entries = self._entries(queue)
        entries.append(entry)
        overflow = len(entries) - self.max_depth
        if overflow > 0:
            del entries[:overflow]
            if queue not in self._dropped:
                logger.warning(
                    f"Queue {queue} reached {self.max_depth} unacknowledged messages, dropping oldest"
                )
            self._dropped[queue] = self._dropped.get(queue, 0) + overflow
        self._event(queue).set()
        return entry.message_id

    def _receive(self, queue: str, max_messages: int, visibility_timeout: int) -> List[Message]:
        now = self._clock()
        received = []
        for entry in self._entries(queue):
            if len(received) >= max_messages:
                break
            if entry.visible_at > now:
                continue
            entry.visible_at = now + visibility_timeout
            entry.receipt_handle = str(uuid.uuid4())
            entry.receive_count += 1
            received.append(
                Message(
                    message_id=entry.message_id,
                    body=entry.body,
                    receipt_handle=entry.receipt_handle,
                    receive_count=entry.receive_count,
                )
            )
        return received

    async def poll(
        self,
        queue: str,
        max_messages: int = 10,
        wait_seconds: int = 20,
        visibility_timeout: int = 60,
    ) -> List[Message]:
        deadline = self._clock() + wait_seconds
        event = self._event(queue)
        while True:
            event.clear()
            messages = self._receive(queue, max_messages, visibility_timeout)
            if messages:
                return messages

            remaining = deadline - self._clock()
            if remaining <= 0:
                return []
            hidden = [e.visible_at for e in self._entries(queue) if e.visible_at > self._clock()]
            if hidden:
                remaining = min(remaining, min(hidden) - self._clock())
            try:
                await asyncio.wait_for(event.wait(), timeout=max(remaining, 0.01))
            except asyncio.TimeoutError:
                pass

    async def ack(self, queue: str, receipt_handle: str) -> None:
        # A stale handle (message redelivered since) does not delete anything
        if not receipt_handle:
            return
        entries = self._entries(queue)
        self._queues[queue] = [e for e in entries if e.receipt_handle != receipt_handle]

    def depth(self, queue: str) -> int:
        """Number of messages not yet acknowledged."""
        return len(self._entries(queue))

    def dropped(self, queue: str) -> int:
        """Number of messages discarded because the queue was full."""
        return self._dropped.get(queue, 0)

    def bodies(self, queue: str) -> List[Dict[str, Any]]:
        """Decoded payloads of every unacknowledged message, oldest first."""
        return [json.loads(e.body) for e in self._entries(queue)]
