"""
OpenSearch client for version-gated document writes.
"""

import asyncio
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import aiohttp

from ..schema.documents import IndexDocument
from ..schema.results import IndexOutcome
from .config import SyncSettings
from .exceptions import IndexerUnavailableError

logger = logging.getLogger(__name__)


class OpenSearchClient:
    """
    Async OpenSearch client for document upserts and deletes.

    Writes use ``version_type=external_gt`` so replays in any order
    converge on the highest version.
    """

    def __init__(self, settings: SyncSettings, session: Optional[aiohttp.ClientSession] = None):
        self.settings = settings
        self.base_url = settings.opensearch_endpoint.rstrip("/")
        self.index_name = settings.opensearch_index
        self.session = session

        self.auth = None
        if settings.opensearch_username and settings.opensearch_password:
            self.auth = aiohttp.BasicAuth(settings.opensearch_username, settings.opensearch_password)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.settings.opensearch_timeout)
            connector = aiohttp.TCPConnector(ssl=self.settings.opensearch_verify_certs)
            self.session = aiohttp.ClientSession(timeout=timeout, connector=connector, auth=self.auth)
        return self.session

    async def close(self):
        """Close the HTTP session."""
        if self.session and not self.session.closed:
            await self.session.close()

    def _doc_url(self, document_id: str) -> str:
        # ids contain "/" and must stay a single path segment
        return f"{self.base_url}/{self.index_name}/_doc/{quote(document_id, safe='')}"

    async def health_check(self) -> bool:
        """Check if OpenSearch is accessible."""
        try:
            session = await self._get_session()
            async with session.get(f"{self.base_url}/_cluster/health") as response:
                if response.status == 200:
                    data = await response.json()
                    return data.get("status") in ["green", "yellow"]
                return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"OpenSearch health check failed: {e}")
            return False

    async def create_index_if_not_exists(self, index_body: Optional[Dict[str, Any]] = None) -> bool:
        """Create the search index if it doesn't exist."""
        index_url = f"{self.base_url}/{self.index_name}"
        try:
            session = await self._get_session()
            async with session.head(index_url) as response:
                if response.status == 200:
                    logger.info(f"Index '{self.index_name}' already exists")
                    return True

            async with session.put(index_url, json=index_body or self._default_index_body()) as response:
                if response.status in [200, 201]:
                    logger.info(f"Created OpenSearch index: {self.index_name}")
                    return True
                error_text = await response.text()
                if response.status == 400 and "resource_already_exists_exception" in error_text:
                    logger.info(f"Index {self.index_name} already exists")
                    return True
                logger.error(f"Failed to create index: {response.status} - {error_text}")
                return False

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Error creating OpenSearch index: {e}")
            return False

    async def index_document(self, document: IndexDocument) -> IndexOutcome:
        """
        Upsert a document unless the index already holds an equal or newer version.

        Returns:
            INDEXED, or STALE_VERSION when the version gate rejected the write

        Raises:
            IndexerUnavailableError: On any other response or transport failure
        """
        params = {
            "version": str(document.version),
            "version_type": "external_gt",
            "routing": document.routing,
        }
        logger.info(f"Indexing {document.id}", extra={"document_id": document.id, "version": document.version})

        try:
            session = await self._get_session()
            async with session.put(self._doc_url(document.id), params=params, json=document.payload) as response:
                if response.status in [200, 201]:
                    return IndexOutcome.INDEXED
                if response.status == 409:
                    logger.info(f"Version conflict for {document.id}, keeping stored version")
                    return IndexOutcome.STALE_VERSION
                error_text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise IndexerUnavailableError(f"Error indexing {document.id}: {e!r}") from e

        logger.error(f"Failed to index {document.id}: {response.status} - {error_text}")
        raise IndexerUnavailableError(
            f"Failed to index {document.id}: {response.status} - {error_text}", status_code=response.status
        )

    async def delete_document(self, document_id: str, routing: str) -> IndexOutcome:
        """
        Delete a document by id.

        Returns:
            DELETED, or ALREADY_ABSENT when the index has no such document

        Raises:
            IndexerUnavailableError: On any other response or transport failure
        """
        logger.info(f"Deleting {document_id}", extra={"document_id": document_id})

        try:
            session = await self._get_session()
            async with session.delete(self._doc_url(document_id), params={"routing": routing}) as response:
                if response.status == 200:
                    return IndexOutcome.DELETED
                if response.status == 404:
                    logger.info(f"{document_id} not found in index")
                    return IndexOutcome.ALREADY_ABSENT
                error_text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise IndexerUnavailableError(f"Error deleting {document_id}: {e!r}") from e

        logger.error(f"Failed to delete {document_id}: {response.status} - {error_text}")
        raise IndexerUnavailableError(
            f"Failed to delete {document_id}: {response.status} - {error_text}", status_code=response.status
        )

    def _default_index_body(self) -> Dict[str, Any]:
        """Index settings; fields are mapped dynamically from the stored payloads."""
        return {
            "settings": {
                "index": {
                    "number_of_shards": 1,
                    "number_of_replicas": 0,
                    "refresh_interval": "5s",
                }
            },
            "mappings": {
                "properties": {
                    "libraryID": {"type": "keyword"},
                    "version": {"type": "long"},
                }
            },
        }
