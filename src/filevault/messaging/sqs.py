"""Amazon SQS message queue."""

import asyncio
import json
import logging
from typing import Any, Dict, List

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from filevault.core.exceptions import QueueError
from filevault.messaging.base import Message, MessageQueue

logger = logging.getLogger(__name__)


def create_sqs_client(region: str, access_key_id: str = "", secret_access_key: str = "") -> Any:
    """Create an SQS client, using explicit credentials when both are given."""
    kwargs: Dict[str, Any] = {"region_name": region}
    if access_key_id and secret_access_key:
        kwargs["aws_access_key_id"] = access_key_id
        kwargs["aws_secret_access_key"] = secret_access_key
    return boto3.client("sqs", **kwargs)


class SQSQueue(MessageQueue):
    """SQS-backed queue; ``queue`` arguments are queue URLs.

    boto3 is synchronous, so every call runs in a worker thread.
    """

    def __init__(self, client: Any):
        self.client = client

    async def publish(self, queue: str, payload: Dict[str, Any]) -> str:
        try:
            response = await asyncio.to_thread(
                self.client.send_message,
                QueueUrl=queue,
                MessageBody=json.dumps(payload, default=str),
            )
        except (BotoCoreError, ClientError) as e:
            raise QueueError(f"Failed to publish to {queue}: {e}") from e
        return response["MessageId"]

    async def poll(
        self,
        queue: str,
        max_messages: int = 10,
        wait_seconds: int = 20,
        visibility_timeout: int = 60,
    ) -> List[Message]:
        try:
            response = await asyncio.to_thread(
                self.client.receive_message,
                QueueUrl=queue,
                MaxNumberOfMessages=max_messages,
                WaitTimeSeconds=wait_seconds,
                VisibilityTimeout=visibility_timeout,
                AttributeNames=["ApproximateReceiveCount"],
            )
        except (BotoCoreError, ClientError) as e:
            raise QueueError(f"Failed to poll {queue}: {e}") from e

        return [
            Message(
                message_id=m["MessageId"],
                body=m.get("Body", ""),
                receipt_handle=m["ReceiptHandle"],
                receive_count=int(m.get("Attributes", {}).get("ApproximateReceiveCount", 1)),
            )
            for m in response.get("Messages", [])
        ]

    async def ack(self, queue: str, receipt_handle: str) -> None:
        try:
            await asyncio.to_thread(
                self.client.delete_message, QueueUrl=queue, ReceiptHandle=receipt_handle
            )
        except (BotoCoreError, ClientError) as e:
            raise QueueError(f"Failed to acknowledge message on {queue}: {e}") from e
