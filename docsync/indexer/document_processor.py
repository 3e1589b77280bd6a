"""
Decoding of stored payloads into search-ready documents.
"""

import gzip
import json
import zlib
from typing import Any, Dict

from ..schema.documents import IndexDocument
from ..schema.events import ChangeEvent
from ..schema.storage import StoredObject
from .exceptions import MalformedInputError

GZIP_MAGIC = b"\x1f\x8b"
GZIP_CONTENT_TYPES = ("application/gzip", "application/x-gzip")


class DocumentProcessor:
    """
    Turns stored objects into IndexDocuments.

    Payloads are JSON objects, optionally gzip-compressed, carrying an
    integer ``version`` used as the external write version.
    """

    version_field = "version"
    key_field = "key"

    def decode_payload(self, stored: StoredObject) -> Dict[str, Any]:
        """
        Decompress (if needed) and parse a stored JSON payload.

        Raises:
            MalformedInputError: If decompression or parsing fails
        """
        body = stored.body
        if self._is_compressed(stored):
            try:
                body = gzip.decompress(body)
            except (OSError, EOFError, zlib.error) as e:
                raise MalformedInputError(f"Failed to decompress {stored.key}: {e}") from e

        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedInputError(f"Failed to parse {stored.key}: {e}") from e

        if not isinstance(payload, dict):
            raise MalformedInputError(f"Payload of {stored.key} is not a JSON object")
        return payload

    def build_document(self, event: ChangeEvent, payload: Dict[str, Any]) -> IndexDocument:
        """
        Build the IndexDocument for a Created event.

        The id and routing come from the event; the redundant key field is
        dropped from the body.
        """
        version = payload.get(self.version_field)
        # bool is an int subclass
        if not isinstance(version, int) or isinstance(version, bool) or version < 0:
            raise MalformedInputError(f"Payload of {event.object_key} has no valid integer version: {version!r}")

        body = {k: v for k, v in payload.items() if k != self.key_field}
        return IndexDocument(id=event.document_id, version=version, routing=event.collection_id, payload=body)

    def _is_compressed(self, stored: StoredObject) -> bool:
        if stored.content_type in GZIP_CONTENT_TYPES:
            return True
        if stored.content_encoding == "gzip":
            return True
        return stored.body[:2] == GZIP_MAGIC
