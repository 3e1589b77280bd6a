"""
Normalization of object store notifications into change events.

Classification is structural: the notification's event name must be one
of the known ``NotificationType`` values. Keys are laid out as
``<collection_id>/<item_key>``; item keys beginning with ``_`` are
reserved for administrative records such as the reindex checkpoint.
"""

import json
import logging
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import unquote_plus

from pydantic import ValidationError

from ..schema.events import ChangeEvent, ChangeVariant
from .exceptions import MalformedInputError

logger = logging.getLogger(__name__)

RESERVED_PREFIX = "_"


class NotificationType(str, Enum):
    OBJECT_CREATED_PUT = "ObjectCreated:Put"
    OBJECT_CREATED_POST = "ObjectCreated:Post"
    OBJECT_CREATED_COPY = "ObjectCreated:Copy"
    OBJECT_CREATED_MULTIPART = "ObjectCreated:CompleteMultipartUpload"
    OBJECT_REMOVED_DELETE = "ObjectRemoved:Delete"
    OBJECT_REMOVED_DELETE_MARKER = "ObjectRemoved:DeleteMarkerCreated"


NOTIFICATION_VARIANTS: Dict[NotificationType, ChangeVariant] = {
    NotificationType.OBJECT_CREATED_PUT: ChangeVariant.CREATED,
    NotificationType.OBJECT_CREATED_POST: ChangeVariant.CREATED,
    NotificationType.OBJECT_CREATED_COPY: ChangeVariant.CREATED,
    NotificationType.OBJECT_CREATED_MULTIPART: ChangeVariant.CREATED,
    NotificationType.OBJECT_REMOVED_DELETE: ChangeVariant.REMOVED,
    NotificationType.OBJECT_REMOVED_DELETE_MARKER: ChangeVariant.REMOVED,
}


def classify(event_name: str) -> ChangeVariant:
    """Map a notification event name to a change variant."""
    try:
        notification_type = NotificationType(event_name)
    except ValueError:
        raise MalformedInputError(f"Unrecognized notification type: {event_name!r}") from None
    return NOTIFICATION_VARIANTS[notification_type]


def split_key(key: str) -> Tuple[str, str]:
    """Split ``<collection>/<item>`` at the first slash."""
    collection_id, _, item_key = key.partition("/")
    if not collection_id or not item_key:
        raise MalformedInputError(f"Key {key!r} is not of the form <collection>/<item>")
    return collection_id, item_key


def is_reserved_key(item_key: str) -> bool:
    return item_key.startswith(RESERVED_PREFIX)


def normalize_notification(notification: Mapping[str, Any]) -> Optional[ChangeEvent]:
    """
    Parse an S3 event notification envelope.

    Only the first record is used; the store delivers one record per
    notification.

    Returns:
        ChangeEvent, or None for reserved keys and S3 test events

    Raises:
        MalformedInputError: If the envelope is missing required fields
            or carries an unknown event type
    """
    if notification.get("Event") == "s3:TestEvent":
        logger.info("Ignoring S3 test event")
        return None

    records = notification.get("Records")
    if not isinstance(records, list) or not records:
        raise MalformedInputError("Notification has no records")

    record = records[0]
    try:
        event_name = record["eventName"]
        s3 = record["s3"]
        bucket = s3["bucket"]["name"]
        raw_key = s3["object"]["key"]
    except (KeyError, TypeError) as e:
        raise MalformedInputError(f"Notification record is missing {e}") from e

    if not isinstance(bucket, str) or not isinstance(raw_key, str):
        raise MalformedInputError("Notification bucket name and key must be strings")
    if not bucket or not raw_key:
        raise MalformedInputError("Notification record has an empty bucket or key")

    variant = classify(event_name)
    collection_id, item_key = split_key(unquote_plus(raw_key))

    if is_reserved_key(item_key):
        logger.debug(f"Skipping reserved key {collection_id}/{item_key}")
        return None

    if variant is ChangeVariant.REMOVED:
        return ChangeEvent.removed(collection_id, item_key)

    etag = s3["object"].get("eTag")
    if isinstance(etag, str):
        etag = etag.strip('"')
    if not isinstance(etag, str) or not etag:
        raise MalformedInputError(f"Created notification for {collection_id}/{item_key} has no eTag")
    return ChangeEvent.created(collection_id, item_key, etag)


def normalize_payload(data: Mapping[str, Any]) -> Optional[ChangeEvent]:
    """
    Normalize any payload the pipeline can be handed.

    Accepts an S3 notification envelope, a serialized ChangeEvent, or a
    Lambda on-failure destination record wrapping either of them.
    """
    if not isinstance(data, Mapping):
        raise MalformedInputError("Payload is not a JSON object")

    request_payload = data.get("requestPayload")
    if isinstance(request_payload, Mapping):
        return normalize_payload(request_payload)

    if "Records" in data or "Event" in data:
        return normalize_notification(data)

    try:
        event = ChangeEvent.model_validate(data)
    except ValidationError as e:
        raise MalformedInputError(f"Invalid change event: {e}") from e

    if is_reserved_key(event.item_key):
        return None
    return event


def parse_message_body(body: str) -> Optional[ChangeEvent]:
    """Parse a retry queue message body."""
    try:
        data: Dict[str, Any] = json.loads(body)
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedInputError(f"Message body is not JSON: {e}") from e
    return normalize_payload(data)
