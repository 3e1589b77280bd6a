"""
Object store client for the sync pipeline.

Wraps S3 reads, writes and prefix listings. boto3 calls run in the
default executor so the pipeline's event loop is never blocked.
"""

import asyncio
import logging
from typing import Any, Callable, Optional, TypeVar

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..schema.storage import ListedObject, ObjectPage, StoredObject
from .config import SyncSettings
from .exceptions import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

NOT_FOUND_CODES = ("NoSuchKey", "404", "NotFound")


def strip_etag(etag: Optional[str]) -> str:
    """S3 returns ETags wrapped in quotes."""
    return (etag or "").strip('"')


class ObjectStore:
    """
    S3 client wrapper scoped to the configured bucket.
    """

    def __init__(self, settings: SyncSettings, client: Optional[Any] = None):
        self.settings = settings
        self.bucket = settings.s3_bucket
        self._client = client

    def _ensure_client(self) -> Any:
        """Ensure S3 client is initialized"""
        if self._client is None:
            try:
                self._client = boto3.client("s3", **self.settings.aws_client_kwargs())  # type: ignore
                logger.debug("Created new S3 client")
            except Exception as e:
                logger.error(f"Failed to create S3 client: {e}")
                raise StorageError(f"S3 client initialization failed: {e}") from e
        return self._client

    async def _run(self, func: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func)

    async def get_object(self, key: str) -> Optional[StoredObject]:
        """
        Download an object with its ETag.

        Returns:
            StoredObject, or None if the key does not exist

        Raises:
            StorageError: If the download fails for any other reason
        """

        def _download():
            client = self._ensure_client()
            response = client.get_object(Bucket=self.bucket, Key=key)
            return response, response["Body"].read()

        try:
            response, body = await self._run(_download)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code in NOT_FOUND_CODES:
                logger.info(f"{key} not found")
                return None
            logger.error(f"S3 download failed with error {error_code}: {e}")
            raise StorageError(f"S3 download failed for {key}: {error_code}", error_code=error_code) from e
        except BotoCoreError as e:
            logger.error(f"S3 download failed for {key}: {e}")
            raise StorageError(f"S3 download failed for {key}: {e}") from e

        return StoredObject(
            bucket=self.bucket,
            key=key,
            etag=strip_etag(response.get("ETag")),
            body=body,
            content_type=response.get("ContentType"),
            content_encoding=response.get("ContentEncoding"),
        )

    async def put_object(self, key: str, body: bytes, content_type: str = "application/json") -> str:
        """
        Upload an object and return its unquoted ETag.

        Raises:
            StorageError: If upload fails
        """

        def _upload():
            client = self._ensure_client()
            return client.put_object(Bucket=self.bucket, Key=key, Body=body, ContentType=content_type)

        try:
            response = await self._run(_upload)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error(f"S3 upload failed with error {error_code}: {e}")
            raise StorageError(f"S3 upload failed for {key}: {error_code}", error_code=error_code) from e
        except BotoCoreError as e:
            logger.error(f"S3 upload failed for {key}: {e}")
            raise StorageError(f"S3 upload failed for {key}: {e}") from e

        return strip_etag(response.get("ETag"))

    async def delete_object(self, key: str) -> None:
        """Delete an object; deleting a missing key succeeds."""

        def _delete():
            client = self._ensure_client()
            return client.delete_object(Bucket=self.bucket, Key=key)

        try:
            await self._run(_delete)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error(f"S3 delete failed with error {error_code}: {e}")
            raise StorageError(f"S3 delete failed for {key}: {error_code}", error_code=error_code) from e
        except BotoCoreError as e:
            raise StorageError(f"S3 delete failed for {key}: {e}") from e

    async def list_page(self, prefix: str, start_after: Optional[str] = None, max_keys: int = 1000) -> ObjectPage:
        """
        List one page of keys under a prefix in lexicographic order.

        Args:
            prefix: Key prefix, e.g. ``"lib42/"``
            start_after: List strictly after this key
            max_keys: Page size (S3 caps this at 1000)

        Returns:
            ObjectPage with keys, ETags and a truncation flag
        """
        params = {"Bucket": self.bucket, "Prefix": prefix, "MaxKeys": max_keys}
        if start_after:
            params["StartAfter"] = start_after

        def _list():
            client = self._ensure_client()
            return client.list_objects_v2(**params)

        try:
            response = await self._run(_list)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error(f"S3 list failed with error {error_code}: {e}")
            raise StorageError(f"S3 list failed for {prefix}: {error_code}", error_code=error_code) from e
        except BotoCoreError as e:
            raise StorageError(f"S3 list failed for {prefix}: {e}") from e

        objects = [
            ListedObject(key=item["Key"], etag=strip_etag(item.get("ETag"))) for item in response.get("Contents", [])
        ]
        return ObjectPage(objects=objects, is_truncated=bool(response.get("IsTruncated", False)))

    async def health_check(self) -> bool:
        """Check that the bucket is reachable."""
        try:
            await self._run(lambda: self._ensure_client().head_bucket(Bucket=self.bucket))
            return True
        except (ClientError, BotoCoreError, StorageError) as e:
            logger.error(f"S3 health check failed: {e}")
            return False
