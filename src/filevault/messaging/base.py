"""Abstract message queue interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List


@dataclass
class Message:
    """A message received from a queue."""

    message_id: str
    body: str
    receipt_handle: str
    receive_count: int = 1


class MessageQueue(ABC):
    """At-least-once message queue.

    A received message stays hidden from other receivers for the visibility
    timeout and is delivered again unless acknowledged with its receipt
    handle before then.
    """

    @abstractmethod
    async def publish(self, queue: str, payload: Dict[str, Any]) -> str:
        """Publish a JSON payload and return the message id."""
        pass

    @abstractmethod
    async def poll(
        self,
        queue: str,
        max_messages: int = 10,
        wait_seconds: int = 20,
        visibility_timeout: int = 60,
    ) -> List[Message]:
        """Long-poll for up to ``max_messages`` messages."""
        pass

    @abstractmethod
    async def ack(self, queue: str, receipt_handle: str) -> None:
        """Acknowledge (delete) a received message."""
        pass

    async def close(self) -> None:
        pass
