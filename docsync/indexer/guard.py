"""
Consistency guard: refuses to index content that no longer matches the
notification it was fetched for.
"""

import logging
from typing import Optional

from ..schema.events import ChangeEvent, ChangeVariant
from ..schema.storage import StoredObject
from .exceptions import ConsistencyMismatchError
from .storage import ObjectStore, strip_etag

logger = logging.getLogger(__name__)


class ConsistencyGuard:
    def __init__(self, store: ObjectStore):
        self.store = store

    async def fetch_verified(self, event: ChangeEvent) -> Optional[StoredObject]:
        """
        Fetch the object for a Created event and check its fingerprint.

        Returns:
            The stored object, or None if it no longer exists

        Raises:
            ConsistencyMismatchError: If the stored ETag differs from the event's
        """
        if event.variant is not ChangeVariant.CREATED:
            raise ValueError(f"Only Created events carry a fingerprint, got {event.variant.value}")

        stored = await self.store.get_object(event.object_key)
        if stored is None:
            # Expected when a backlog is replayed after the object was deleted
            return None

        expected = strip_etag(event.content_fingerprint)
        if stored.etag != expected:
            raise ConsistencyMismatchError(event.object_key, expected, stored.etag)

        return stored
