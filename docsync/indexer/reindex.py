"""
Checkpointed full-collection reindex.

Lists a collection page by page, turns every object into a synthetic
Created event, and pushes the events onto the retry queue for the
drainer to apply. After all of a page's batches are confirmed, the
checkpoint moves to that page's last key. A run that runs out of time
raises ReindexIncompleteError, and the redelivered request resumes
after the checkpoint.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from pydantic import ValidationError

from ..schema.checkpoint import ReindexCheckpoint
from ..schema.events import ChangeEvent
from ..schema.results import ReindexResult, ReindexState
from ..utils.logging import get_sync_logger, log_sync_event
from .config import SyncSettings
from .exceptions import MalformedInputError, ReindexIncompleteError
from .normalizer import is_reserved_key
from .queue import RetryQueue
from .storage import ObjectStore

logger = logging.getLogger(__name__)
events_logger = get_sync_logger(__name__)

RemainingTime = Callable[[], float]


class CheckpointStore:
    """Reads and writes ReindexCheckpoints at each collection's reserved key."""

    def __init__(self, store: ObjectStore, settings: SyncSettings):
        self.store = store
        self.settings = settings

    async def load(self, collection_id: str) -> Optional[ReindexCheckpoint]:
        stored = await self.store.get_object(self.settings.checkpoint_key(collection_id))
        if stored is None:
            return None
        try:
            checkpoint = ReindexCheckpoint.model_validate_json(stored.body)
        except ValidationError as e:
            raise MalformedInputError(f"Corrupt reindex checkpoint for {collection_id}: {e}") from e
        if checkpoint.collection_id != collection_id:
            raise MalformedInputError(
                f"Checkpoint at {stored.key} belongs to collection {checkpoint.collection_id!r}"
            )
        return checkpoint

    async def save(self, checkpoint: ReindexCheckpoint) -> None:
        await self.store.put_object(self.settings.checkpoint_key(checkpoint.collection_id), checkpoint.to_json_bytes())

    async def delete(self, collection_id: str) -> None:
        await self.store.delete_object(self.settings.checkpoint_key(collection_id))


def chunked(events: List[ChangeEvent], size: int) -> List[List[ChangeEvent]]:
    return [events[i : i + size] for i in range(0, len(events), size)]


class ReindexOrchestrator:
    def __init__(
        self,
        store: ObjectStore,
        queue: RetryQueue,
        settings: SyncSettings,
        checkpoints: Optional[CheckpointStore] = None,
    ):
        self.store = store
        self.queue = queue
        self.page_size = settings.reindex_page_size
        self.batch_size = queue.max_batch_size
        self.safety_margin = settings.reindex_safety_margin
        self.checkpoints = checkpoints or CheckpointStore(store, settings)

    async def run(self, collection_id: str, remaining_seconds: RemainingTime) -> ReindexResult:
        """
        Reindex one collection until it is exhausted or time runs out.

        Args:
            collection_id: Collection whose ``<collection_id>/`` prefix is listed
            remaining_seconds: Returns the invocation's remaining time

        Returns:
            ReindexResult in the COMPLETED state

        Raises:
            ReindexIncompleteError: If the time budget ran out before enumeration finished
            MalformedInputError: If the collection id or stored checkpoint is invalid
            StorageError, QueueError: On store or queue failures; the checkpoint is not advanced
        """
        if not collection_id or "/" in collection_id:
            raise MalformedInputError(f"Invalid collection id: {collection_id!r}")

        result = ReindexResult(collection_id=collection_id, state=ReindexState.STARTING)

        checkpoint = await self.checkpoints.load(collection_id)
        if checkpoint is None:
            checkpoint = ReindexCheckpoint(collection_id=collection_id)
            await self.checkpoints.save(checkpoint)
            log_sync_event(events_logger, "reindex_started", collection_id=collection_id)
        else:
            log_sync_event(
                events_logger,
                "reindex_resumed",
                collection_id=collection_id,
                last_key=checkpoint.last_key,
                pages_completed=checkpoint.pages_completed,
            )

        result.state = ReindexState.PAGING
        result.last_key = checkpoint.last_key
        prefix = f"{collection_id}/"

        while True:
            if remaining_seconds() <= self.safety_margin:
                result.state = ReindexState.STOPPED_ON_TIMEOUT
                log_sync_event(
                    events_logger,
                    "reindex_timeout_warning",
                    collection_id=collection_id,
                    last_key=checkpoint.last_key,
                    pages=result.pages,
                    enqueued=result.enqueued,
                )
                raise ReindexIncompleteError(collection_id, checkpoint.last_key)

            page = await self.store.list_page(prefix, start_after=checkpoint.last_key, max_keys=self.page_size)

            events: List[ChangeEvent] = []
            for listed in page.objects:
                item_key = listed.key[len(prefix) :]
                if not item_key or is_reserved_key(item_key):
                    continue
                events.append(ChangeEvent.created(collection_id, item_key, listed.etag))

            await self._enqueue_page(events)

            if page.last_key is not None:
                checkpoint = checkpoint.advance(page.last_key, len(events))
                await self.checkpoints.save(checkpoint)
                result.pages += 1
                result.enqueued += len(events)
                result.last_key = page.last_key
                log_sync_event(
                    events_logger,
                    "reindex_page_enqueued",
                    collection_id=collection_id,
                    page=checkpoint.pages_completed,
                    enqueued=len(events),
                    last_key=page.last_key,
                )

            if not page.is_truncated:
                break

        await self.checkpoints.delete(collection_id)
        result.state = ReindexState.COMPLETED
        log_sync_event(
            events_logger,
            "reindex_completed",
            collection_id=collection_id,
            pages=result.pages,
            enqueued=result.enqueued,
            total_enqueued=checkpoint.keys_enqueued,
        )
        return result

    async def _enqueue_page(self, events: List[ChangeEvent]) -> None:
        """Send a page's batches concurrently and wait for every one to settle."""
        if not events:
            return

        batches = chunked(events, self.batch_size)
        outcomes = await asyncio.gather(*(self.queue.send_batch(batch) for batch in batches), return_exceptions=True)

        errors = [outcome for outcome in outcomes if isinstance(outcome, BaseException)]
        if errors:
            logger.error(f"{len(errors)}/{len(batches)} batches failed to enqueue")
            raise errors[0]
