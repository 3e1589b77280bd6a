"""
Dead letter drain for failed change notifications.

A drain cycle leases one message at a time, replays it, and acknowledges
it only once the replay succeeded or can never succeed. The cycle stops
on an empty queue, on the first unclassified failure, or when the
invocation's remaining time drops to the safety margin.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Optional, Protocol

import boto3

from ..schema.queue import RetryMessage
from ..schema.results import DrainResult, DrainState
from ..utils.logging import get_sync_logger, log_sync_event
from .config import SyncSettings
from .exceptions import ConsistencyMismatchError, MalformedInputError, QueueError, ReplayError
from .pipeline import SyncPipeline
from .queue import RetryQueue

logger = logging.getLogger(__name__)
events_logger = get_sync_logger(__name__)

RemainingTime = Callable[[], float]


class Replayer(Protocol):
    async def replay(self, message: RetryMessage) -> None: ...


class DirectReplayer:
    """Replays a message body through the guard and indexer in-process."""

    def __init__(self, pipeline: SyncPipeline):
        self.pipeline = pipeline

    async def replay(self, message: RetryMessage) -> None:
        outcome = await self.pipeline.process_message_body(message.body)
        logger.debug(f"Replayed message {message.message_id}: {outcome.value}")


class LambdaReplayer:
    """
    Replays a message body by invoking the primary handler synchronously.

    Failures are classified by the ``errorType`` the runtime reports,
    which is the exception class name raised by the handler.
    """

    def __init__(self, function_name: str, settings: SyncSettings, client: Optional[Any] = None):
        self.function_name = function_name
        self.settings = settings
        self._lambda_client = client

    def _ensure_client(self) -> Any:
        if self._lambda_client is None:
            self._lambda_client = boto3.client("lambda", **self.settings.aws_client_kwargs())  # type: ignore
        return self._lambda_client

    async def replay(self, message: RetryMessage) -> None:
        def _invoke():
            client = self._ensure_client()
            response = client.invoke(
                FunctionName=self.function_name,
                InvocationType="RequestResponse",
                Payload=message.body.encode("utf-8"),
            )
            return response, response["Payload"].read()

        loop = asyncio.get_running_loop()
        response, raw_payload = await loop.run_in_executor(None, _invoke)

        if not response.get("FunctionError"):
            return

        try:
            payload = json.loads(raw_payload or b"{}")
        except json.JSONDecodeError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        error_type = payload.get("errorType")
        error_message = payload.get("errorMessage") or f"{self.function_name} failed"

        if error_type == ConsistencyMismatchError.__name__:
            raise ConsistencyMismatchError(message.message_id or "unknown", message=error_message)
        if error_type == MalformedInputError.__name__:
            raise MalformedInputError(error_message)
        raise ReplayError(error_message, error_type=error_type)


class DeadLetterDrainer:
    """Time-boxed drain of the retry queue."""

    def __init__(self, queue: RetryQueue, replayer: Replayer, settings: SyncSettings):
        self.queue = queue
        self.replayer = replayer
        self.visibility_timeout = settings.drain_visibility_timeout
        self.safety_margin = settings.drain_safety_margin
        self.log_interval = settings.drain_log_interval

    async def drain(self, remaining_seconds: RemainingTime) -> DrainResult:
        """
        Run one drain cycle.

        Args:
            remaining_seconds: Returns the invocation's remaining time

        Returns:
            DrainResult with the terminal state and counters; never raises
            for queue or replay failures
        """
        result = DrainResult(state=DrainState.DRAINING)
        log_sync_event(events_logger, "drain_started", remaining_seconds=remaining_seconds())

        try:
            while result.state is DrainState.DRAINING:
                if remaining_seconds() <= self.safety_margin:
                    result.state = DrainState.STOPPED_ON_TIMEOUT
                    break
                await self._drain_one(result)
        finally:
            count = result.processed
            logger.info(f"Processed {count} message{'' if count == 1 else 's'}")
            log_sync_event(
                events_logger,
                "drain_finished",
                state=result.state.value,
                processed=result.processed,
                superseded=result.superseded,
                discarded=result.discarded,
                last_error=result.last_error,
            )

        return result

    async def _drain_one(self, result: DrainResult) -> None:
        """Lease, replay and settle a single message, updating ``result``."""
        try:
            message = await self.queue.receive_one(self.visibility_timeout)
        except QueueError as e:
            self._stop_on_error(result, e)
            return

        if message is None:
            logger.info("No messages in queue")
            result.state = DrainState.STOPPED_ON_EMPTY
            return

        try:
            await self.replayer.replay(message)
        except ConsistencyMismatchError as e:
            # The object changed again; its newer notification supersedes this one
            log_sync_event(
                events_logger,
                "drain_message_superseded",
                message_id=message.message_id,
                receive_count=message.receive_count,
                error=str(e),
            )
            if await self._acknowledge(message, result):
                result.superseded += 1
            return
        except MalformedInputError as e:
            log_sync_event(
                events_logger,
                "drain_message_failed",
                message_id=message.message_id,
                receive_count=message.receive_count,
                error=str(e),
            )
            if await self._acknowledge(message, result):
                result.discarded += 1
            return
        except Exception as e:
            # Left unacknowledged: redelivered once the lease expires
            self._stop_on_error(result, e, message)
            return

        if await self._acknowledge(message, result):
            result.processed += 1
            if result.processed % self.log_interval == 0:
                logger.info(f"Processed {result.processed} messages")

    async def _acknowledge(self, message: RetryMessage, result: DrainResult) -> bool:
        try:
            await self.queue.delete(message)
        except QueueError as e:
            self._stop_on_error(result, e, message)
            return False
        return True

    def _stop_on_error(self, result: DrainResult, error: Exception, message: Optional[RetryMessage] = None) -> None:
        result.state = DrainState.STOPPED_ON_ERROR
        result.last_error = f"{type(error).__name__}: {error}"
        log_sync_event(
            events_logger,
            "drain_stopped_on_error",
            error=result.last_error,
            message_id=message.message_id if message else None,
            receive_count=message.receive_count if message else None,
        )
