"""
SQS retry queue client.

Leases single messages for the drainer and sends batches of change
events for the reindex orchestrator.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, TypeVar

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from mypy_boto3_sqs.type_defs import MessageTypeDef
from pydantic import BaseModel

from ..schema.events import ChangeEvent
from ..schema.queue import RetryMessage
from ..utils.retry import QUEUE_RETRY_CONFIG, AsyncRetrier, RetryError
from .config import MAX_QUEUE_BATCH_SIZE, RECEIVE_WAIT_SECONDS, SyncSettings
from .exceptions import QueueError

logger = logging.getLogger(__name__)

T = TypeVar("T")

AWS_ERRORS = (ClientError, BotoCoreError)


class QueueStats(BaseModel):
    """Statistics for queue operations"""

    messages_received: int = 0
    messages_deleted: int = 0
    messages_sent: int = 0
    batch_operations: int = 0
    aws_api_errors: int = 0


class RetryQueue:
    """
    Retry queue wrapper for the configured SQS queue.
    """

    def __init__(self, settings: SyncSettings, client: Optional[Any] = None, retrier: Optional[AsyncRetrier] = None):
        self.settings = settings
        self.queue_url = settings.sqs_retry_queue_url
        self.max_batch_size = min(settings.queue_batch_size, MAX_QUEUE_BATCH_SIZE)
        self.retrier = retrier or AsyncRetrier(QUEUE_RETRY_CONFIG)
        self._sqs_client = client
        self.stats = QueueStats()

    def _ensure_sqs_client(self) -> Any:
        """Ensure SQS client is initialized"""
        if self._sqs_client is None:
            self._sqs_client = boto3.client("sqs", **self.settings.aws_client_kwargs())  # type: ignore
            logger.debug("Created SQS client for retry queue")
        return self._sqs_client

    async def _call(self, operation: str, func: Callable[[], T]) -> T:
        """Run a blocking SQS call in the executor with bounded retries."""

        async def _attempt() -> T:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, func)

        try:
            return await self.retrier.call(_attempt, exceptions=AWS_ERRORS)
        except RetryError as e:
            self.stats.aws_api_errors += 1
            logger.error(f"SQS {operation} failed: {e.last_exception}")
            raise QueueError(f"SQS {operation} failed: {e.last_exception}") from e.last_exception

    async def receive_one(self, visibility_timeout: int) -> Optional[RetryMessage]:
        """
        Lease a single message.

        Args:
            visibility_timeout: Lease length in seconds

        Returns:
            RetryMessage, or None when the queue is empty
        """

        def _receive():
            client = self._ensure_sqs_client()
            return client.receive_message(
                QueueUrl=self.queue_url,
                MaxNumberOfMessages=1,
                VisibilityTimeout=visibility_timeout,
                WaitTimeSeconds=RECEIVE_WAIT_SECONDS,
                AttributeNames=["ApproximateReceiveCount"],
            )

        received_at = datetime.now(timezone.utc)
        response = await self._call("receive", _receive)
        messages: List[MessageTypeDef] = response.get("Messages", [])
        if not messages:
            return None

        self.stats.messages_received += 1
        return self._to_retry_message(messages[0], received_at + timedelta(seconds=visibility_timeout))

    def _to_retry_message(self, message: MessageTypeDef, visibility_deadline: datetime) -> RetryMessage:
        attributes = message.get("Attributes", {})
        return RetryMessage(
            body=message.get("Body", ""),
            receipt_handle=message.get("ReceiptHandle", ""),
            message_id=message.get("MessageId"),
            visibility_deadline=visibility_deadline,
            receive_count=int(attributes.get("ApproximateReceiveCount", "1")),
        )

    async def delete(self, message: RetryMessage) -> None:
        """Acknowledge a message so it is never redelivered."""

        def _delete():
            client = self._ensure_sqs_client()
            return client.delete_message(QueueUrl=self.queue_url, ReceiptHandle=message.receipt_handle)

        await self._call("delete", _delete)
        self.stats.messages_deleted += 1
        logger.debug(f"Deleted message {message.message_id}")

    async def send_batch(self, events: List[ChangeEvent]) -> int:
        """
        Send up to ``max_batch_size`` change events in one request.

        Returns:
            Number of messages sent

        Raises:
            ValueError: If the batch exceeds the SQS limit
            QueueError: If the request fails or any entry is rejected
        """
        if not events:
            return 0
        if len(events) > self.max_batch_size:
            raise ValueError(f"Batch of {len(events)} exceeds limit of {self.max_batch_size}")

        entries: List[Dict[str, Any]] = []
        for i, event in enumerate(events):
            entries.append(
                {
                    "Id": str(i),
                    "MessageBody": event.to_message_body(),
                    "MessageAttributes": {
                        "collectionId": {"StringValue": event.collection_id, "DataType": "String"},
                        "variant": {"StringValue": event.variant.value, "DataType": "String"},
                    },
                }
            )

        def _send():
            client = self._ensure_sqs_client()
            return client.send_message_batch(QueueUrl=self.queue_url, Entries=entries)

        response = await self._call("send_batch", _send)
        self.stats.batch_operations += 1

        failed = response.get("Failed", [])
        if failed:
            failed_ids = [f.get("Id", "?") for f in failed]
            for failure in failed:
                logger.error(f"Message send failure: {failure}")
            raise QueueError(f"{len(failed)}/{len(events)} messages failed to send", failed_ids=failed_ids)

        self.stats.messages_sent += len(events)
        return len(events)

    def get_stats(self) -> Dict[str, Any]:
        """Get retry queue statistics"""
        return {
            **self.stats.model_dump(),
            "retrier": self.retrier.get_stats(),
            "configuration": {"queue_url": self.queue_url, "max_batch_size": self.max_batch_size},
        }

    async def get_queue_depth(self) -> Dict[str, int]:
        """Approximate visible and in-flight message counts."""

        def _attributes():
            client = self._ensure_sqs_client()
            return client.get_queue_attributes(
                QueueUrl=self.queue_url,
                AttributeNames=["ApproximateNumberOfMessages", "ApproximateNumberOfMessagesNotVisible"],
            )

        response = await self._call("get_attributes", _attributes)
        attributes = response.get("Attributes", {})
        return {
            "visible": int(attributes.get("ApproximateNumberOfMessages", 0)),
            "in_flight": int(attributes.get("ApproximateNumberOfMessagesNotVisible", 0)),
        }
