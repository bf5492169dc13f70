"""Long-running queue consumers."""

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import ValidationError

from filevault.messaging.base import Message, MessageQueue
from filevault.models.events import QueueMessage, parse_message

logger = logging.getLogger(__name__)

Handler = Callable[[QueueMessage], Union[Any, Awaitable[Any]]]


class QueueConsumer:
    """Poll one queue and hand each valid message to a handler.

    Per message:

    - body that is not JSON, or a handler that raises: left unacknowledged,
      so the queue's redelivery/DLQ policy decides what happens next
    - body that fails schema validation: logged and acknowledged (discarded)
    - handled successfully: acknowledged

    The consumer never retries on its own. A failed poll backs off for a
    fixed delay. Handlers must tolerate duplicate delivery.
    """

    def __init__(
        self,
        queue: MessageQueue,
        queue_name: str,
        kind: str,
        handler: Handler,
        max_messages: int = 10,
        wait_seconds: int = 20,
        visibility_timeout: int = 60,
        error_backoff_seconds: float = 2.0,
    ):
        self.queue = queue
        self.queue_name = queue_name
        self.kind = kind
        self.handler = handler
        self.max_messages = max_messages
        self.wait_seconds = wait_seconds
        self.visibility_timeout = visibility_timeout
        self.error_backoff_seconds = error_backoff_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def process(self, message: Message) -> bool:
        """Handle one message.

        Returns:
            True if the message was acknowledged
        """
        try:
            payload = json.loads(message.body or "{}")
        except json.JSONDecodeError as e:
            logger.warning(
                f"Undecodable {self.kind} message left for redelivery: {e}",
                extra={"message_id": message.message_id, "receive_count": message.receive_count},
            )
            return False

        try:
            event = parse_message(self.kind, payload)
        except ValidationError as e:
            logger.warning(
                f"Discarding invalid {self.kind} message",
                extra={"message_id": message.message_id, "errors": e.errors(include_url=False)},
            )
        else:
            try:
                result = self.handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Handler failed for {self.kind} message, leaving for redelivery: {e}",
                    extra={"message_id": message.message_id, "receive_count": message.receive_count},
                    exc_info=True,
                )
                return False

        try:
            await self.queue.ack(self.queue_name, message.receipt_handle)
        except Exception as e:
            logger.warning(
                f"Failed to acknowledge {self.kind} message: {e}",
                extra={"message_id": message.message_id},
            )
            return False
        return True

    async def poll_once(self) -> int:
        """Run one poll and process what it returned.

        Returns:
            Number of messages acknowledged
        """
        messages = await self.queue.poll(
            self.queue_name,
            max_messages=self.max_messages,
            wait_seconds=self.wait_seconds,
            visibility_timeout=self.visibility_timeout,
        )
        if messages:
            logger.debug(f"Received {len(messages)} {self.kind} messages")
        acked = 0
        for message in messages:
            if await self.process(message):
                acked += 1
        return acked

    async def run(self) -> None:
        """Poll until :meth:`stop` is called."""
        self._running = True
        logger.info(f"Starting {self.kind} consumer", extra={"queue": self.queue_name})
        while self._running:
            try:
                await self.poll_once()
            except Exception as e:
                logger.warning(
                    f"Polling {self.kind} queue failed, retrying in {self.error_backoff_seconds}s: {e}",
                    extra={"queue": self.queue_name},
                )
                await asyncio.sleep(self.error_backoff_seconds)
        logger.info(f"Stopped {self.kind} consumer", extra={"queue": self.queue_name})

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
