"""
Indexer: applies change events to the search engine.

Order for Created events is fetch, verify, decode, then write; each step
is a suspension point on the invocation's event loop.
"""

import logging
from typing import Any, Mapping, Optional

from ..schema.events import ChangeEvent, ChangeVariant
from ..schema.results import IndexOutcome
from .document_processor import DocumentProcessor
from .guard import ConsistencyGuard
from .normalizer import normalize_payload, parse_message_body
from .opensearch_client import OpenSearchClient
from .storage import ObjectStore

logger = logging.getLogger(__name__)


class SyncPipeline:
    """
    Applies ChangeEvents to the index.

    ConsistencyMismatchError, IndexerUnavailableError, StorageError and
    MalformedInputError propagate to the caller, which decides whether the
    event is retried, abandoned or discarded.
    """

    def __init__(
        self,
        store: ObjectStore,
        search: OpenSearchClient,
        processor: Optional[DocumentProcessor] = None,
    ):
        self.store = store
        self.search = search
        self.guard = ConsistencyGuard(store)
        self.processor = processor or DocumentProcessor()

    async def apply(self, event: ChangeEvent) -> IndexOutcome:
        if event.variant is ChangeVariant.REMOVED:
            return await self.search.delete_document(event.document_id, routing=event.collection_id)

        stored = await self.guard.fetch_verified(event)
        if stored is None:
            logger.info(f"{event.object_key} no longer exists, dropping event")
            return IndexOutcome.OBJECT_GONE

        payload = self.processor.decode_payload(stored)
        document = self.processor.build_document(event, payload)
        return await self.search.index_document(document)

    async def process_notification(self, notification: Mapping[str, Any]) -> IndexOutcome:
        """Primary path: one store notification, or a re-invoked event, per invocation."""
        event = normalize_payload(notification)
        if event is None:
            return IndexOutcome.SKIPPED
        return await self.apply(event)

    async def process_message_body(self, body: str) -> IndexOutcome:
        """Replay path: a retry queue body."""
        event = parse_message_body(body)
        if event is None:
            return IndexOutcome.SKIPPED
        return await self.apply(event)
