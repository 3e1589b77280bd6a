"""
Tests for the S3 object store wrapper.
"""

import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from docsync.indexer.exceptions import StorageError
from docsync.indexer.storage import ObjectStore, strip_etag


def client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def s3_client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def object_store(settings, s3_client) -> ObjectStore:
    return ObjectStore(settings, client=s3_client)


def test_strip_etag() -> None:
    assert strip_etag('"abc"') == "abc"
    assert strip_etag("abc") == "abc"
    assert strip_etag(None) == ""


class TestGetObject:
    @pytest.mark.asyncio
    async def test_returns_body_and_unquoted_etag(self, object_store, s3_client) -> None:
        s3_client.get_object.return_value = {
            "Body": io.BytesIO(b'{"version": 1}'),
            "ETag": '"abc"',
            "ContentType": "application/json",
        }

        stored = await object_store.get_object("lib42/itemA")

        assert stored is not None
        assert stored.etag == "abc"
        assert stored.body == b'{"version": 1}'
        assert stored.bucket == "items-bucket"
        s3_client.get_object.assert_called_once_with(Bucket="items-bucket", Key="lib42/itemA")

    @pytest.mark.asyncio
    async def test_missing_key_returns_none(self, object_store, s3_client) -> None:
        s3_client.get_object.side_effect = client_error("NoSuchKey", "GetObject")

        assert await object_store.get_object("lib42/itemA") is None

    @pytest.mark.asyncio
    async def test_access_denied_raises(self, object_store, s3_client) -> None:
        s3_client.get_object.side_effect = client_error("AccessDenied", "GetObject")

        with pytest.raises(StorageError) as exc_info:
            await object_store.get_object("lib42/itemA")

        assert exc_info.value.error_code == "AccessDenied"


class TestListPage:
    @pytest.mark.asyncio
    async def test_lists_after_start_key(self, object_store, s3_client) -> None:
        s3_client.list_objects_v2.return_value = {
            "Contents": [
                {"Key": "lib42/itemB", "ETag": '"b"'},
                {"Key": "lib42/itemC", "ETag": '"c"'},
            ],
            "IsTruncated": True,
        }

        page = await object_store.list_page("lib42/", start_after="lib42/itemA", max_keys=2)

        s3_client.list_objects_v2.assert_called_once_with(
            Bucket="items-bucket", Prefix="lib42/", MaxKeys=2, StartAfter="lib42/itemA"
        )
        assert [o.key for o in page.objects] == ["lib42/itemB", "lib42/itemC"]
        assert page.objects[0].etag == "b"
        assert page.is_truncated
        assert page.last_key == "lib42/itemC"

    @pytest.mark.asyncio
    async def test_first_page_has_no_start_after(self, object_store, s3_client) -> None:
        s3_client.list_objects_v2.return_value = {"IsTruncated": False}

        page = await object_store.list_page("lib42/")

        assert "StartAfter" not in s3_client.list_objects_v2.call_args.kwargs
        assert page.objects == []
        assert page.last_key is None

    @pytest.mark.asyncio
    async def test_list_failure_raises(self, object_store, s3_client) -> None:
        s3_client.list_objects_v2.side_effect = client_error("SlowDown", "ListObjectsV2")

        with pytest.raises(StorageError):
            await object_store.list_page("lib42/")


class TestWrites:
    @pytest.mark.asyncio
    async def test_put_returns_etag(self, object_store, s3_client) -> None:
        s3_client.put_object.return_value = {"ETag": '"new"'}

        assert await object_store.put_object("lib42/_reindex_status", b"{}") == "new"
        assert s3_client.put_object.call_args.kwargs["ContentType"] == "application/json"

    @pytest.mark.asyncio
    async def test_delete_failure_raises(self, object_store, s3_client) -> None:
        s3_client.delete_object.side_effect = client_error("AccessDenied", "DeleteObject")

        with pytest.raises(StorageError):
            await object_store.delete_object("lib42/_reindex_status")

    @pytest.mark.asyncio
    async def test_health_check(self, object_store, s3_client) -> None:
        assert await object_store.health_check() is True

        s3_client.head_bucket.side_effect = client_error("404", "HeadBucket")
        assert await object_store.health_check() is False
