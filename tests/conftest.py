"""
Pytest configuration and in-memory collaborators for sync pipeline tests.
"""

import gzip
import hashlib
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from docsync.indexer.config import SyncSettings
from docsync.indexer.exceptions import IndexerUnavailableError, QueueError
from docsync.schema.documents import IndexDocument
from docsync.schema.events import ChangeEvent
from docsync.schema.queue import RetryMessage
from docsync.schema.results import IndexOutcome
from docsync.schema.storage import ListedObject, ObjectPage, StoredObject


def etag_of(body: bytes) -> str:
    return hashlib.md5(body).hexdigest()


class FakeObjectStore:
    """Bucket held in a dict, listed in byte order like S3."""

    def __init__(self, bucket: str = "items-bucket"):
        self.bucket = bucket
        self.objects: Dict[str, Tuple[bytes, str, Optional[str]]] = {}
        self.list_calls: List[Dict[str, Any]] = []

    def put(self, key: str, payload: Any, compress: bool = False) -> str:
        body = json.dumps(payload).encode("utf-8") if not isinstance(payload, bytes) else payload
        content_type = "application/json"
        if compress:
            body = gzip.compress(body)
            content_type = "application/gzip"
        etag = etag_of(body)
        self.objects[key] = (body, etag, content_type)
        return etag

    async def get_object(self, key: str) -> Optional[StoredObject]:
        if key not in self.objects:
            return None
        body, etag, content_type = self.objects[key]
        return StoredObject(bucket=self.bucket, key=key, etag=etag, body=body, content_type=content_type)

    async def put_object(self, key: str, body: bytes, content_type: str = "application/json") -> str:
        etag = etag_of(body)
        self.objects[key] = (body, etag, content_type)
        return etag

    async def delete_object(self, key: str) -> None:
        self.objects.pop(key, None)

    async def list_page(self, prefix: str, start_after: Optional[str] = None, max_keys: int = 1000) -> ObjectPage:
        self.list_calls.append({"prefix": prefix, "start_after": start_after, "max_keys": max_keys})
        keys = sorted(k for k in self.objects if k.startswith(prefix) and (start_after is None or k > start_after))
        page = keys[:max_keys]
        return ObjectPage(
            objects=[ListedObject(key=k, etag=self.objects[k][1]) for k in page],
            is_truncated=len(keys) > max_keys,
        )


class FakeRetryQueue:
    """Queue with leases: received messages stay stored until deleted."""

    def __init__(self, max_batch_size: int = 10):
        self.max_batch_size = max_batch_size
        self.messages: List[RetryMessage] = []
        self.leased: set = set()
        self.batches: List[List[ChangeEvent]] = []
        self.deleted: List[str] = []
        self.receive_calls = 0
        self.fail_sends_after: Optional[int] = None
        self._next_id = 0

    def push(self, body: str) -> RetryMessage:
        self._next_id += 1
        message = RetryMessage(
            body=body,
            receipt_handle=f"rh-{self._next_id}",
            message_id=f"m-{self._next_id}",
            visibility_deadline=datetime.now(timezone.utc),
        )
        self.messages.append(message)
        return message

    async def receive_one(self, visibility_timeout: int) -> Optional[RetryMessage]:
        self.receive_calls += 1
        for message in self.messages:
            if message.message_id not in self.leased:
                self.leased.add(message.message_id)
                return message.model_copy(
                    update={"visibility_deadline": datetime.now(timezone.utc) + timedelta(seconds=visibility_timeout)}
                )
        return None

    async def delete(self, message: RetryMessage) -> None:
        self.messages = [m for m in self.messages if m.receipt_handle != message.receipt_handle]
        self.deleted.append(message.message_id)

    async def send_batch(self, events: List[ChangeEvent]) -> int:
        assert len(events) <= self.max_batch_size
        if self.fail_sends_after is not None and len(self.batches) >= self.fail_sends_after:
            raise QueueError("send failed", failed_ids=[str(i) for i in range(len(events))])
        self.batches.append(list(events))
        for event in events:
            self.push(event.to_message_body())
        return len(events)

    def get_stats(self) -> Dict[str, Any]:
        return {"messages_sent": len(self.sent_events), "messages_deleted": len(self.deleted)}

    @property
    def sent_events(self) -> List[ChangeEvent]:
        return [event for batch in self.batches for event in batch]


class FakeSearchEngine:
    """Index honouring external_gt versioning."""

    def __init__(self):
        self.documents: Dict[str, IndexDocument] = {}
        self.unavailable = False
        self.writes = 0

    async def index_document(self, document: IndexDocument) -> IndexOutcome:
        if self.unavailable:
            raise IndexerUnavailableError("search engine down", status_code=503)
        existing = self.documents.get(document.id)
        if existing is not None and existing.version >= document.version:
            return IndexOutcome.STALE_VERSION
        self.documents[document.id] = document
        self.writes += 1
        return IndexOutcome.INDEXED

    async def delete_document(self, document_id: str, routing: str) -> IndexOutcome:
        if self.unavailable:
            raise IndexerUnavailableError("search engine down", status_code=503)
        if self.documents.pop(document_id, None) is None:
            return IndexOutcome.ALREADY_ABSENT
        return IndexOutcome.DELETED

    async def close(self) -> None:
        pass


class SequenceClock:
    """Remaining-time callable returning scripted values, then the last one forever."""

    def __init__(self, *values: float):
        self.values = list(values)
        self.calls = 0

    def __call__(self) -> float:
        self.calls += 1
        if len(self.values) > 1:
            return self.values.pop(0)
        return self.values[0]


def s3_notification(event_name: str, key: str, etag: Optional[str] = None, bucket: str = "items-bucket") -> dict:
    obj: Dict[str, Any] = {"key": key}
    if etag is not None:
        obj["eTag"] = etag
    return {
        "Records": [
            {
                "eventVersion": "2.1",
                "eventSource": "aws:s3",
                "eventName": event_name,
                "s3": {"bucket": {"name": bucket}, "object": obj},
            }
        ]
    }


@pytest.fixture
def settings() -> SyncSettings:
    return SyncSettings(
        s3_bucket="items-bucket",
        opensearch_endpoint="http://search.local:9200",
        sqs_retry_queue_url="https://sqs.us-east-1.amazonaws.com/123456789012/items-retry",
        _env_file=None,
    )


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def queue() -> FakeRetryQueue:
    return FakeRetryQueue()


@pytest.fixture
def search() -> FakeSearchEngine:
    return FakeSearchEngine()
