"""
Tests for the Lambda entry points.
"""

import json
from unittest.mock import MagicMock

import pytest
from conftest import s3_notification

from docsync.indexer import main
from docsync.indexer.context import Deadline, SyncContext, lambda_remaining_seconds
from docsync.indexer.dlq_handler import DirectReplayer, LambdaReplayer
from docsync.indexer.exceptions import ConsistencyMismatchError, MalformedInputError, ReindexIncompleteError


@pytest.fixture
def ctx(settings, store, queue, search) -> SyncContext:
    return SyncContext(settings=settings, store=store, queue=queue, search=search)


def sqs_reindex_event(*collection_ids: str) -> dict:
    return {
        "Records": [
            {"messageId": f"msg-{cid}", "body": json.dumps({"collectionId": cid}), "eventSource": "aws:sqs"}
            for cid in collection_ids
        ]
    }


class TestHandlers:
    @pytest.mark.asyncio
    async def test_handle_notification(self, ctx, store, search) -> None:
        etag = store.put("lib42/itemA", {"key": "itemA", "version": 4})

        response = await main.handle_notification(s3_notification("ObjectCreated:Put", "lib42/itemA", etag), ctx)

        assert response == {"outcome": "indexed"}
        assert search.documents["lib42/itemA"].version == 4

    @pytest.mark.asyncio
    async def test_handle_notification_propagates_failures(self, ctx, store) -> None:
        store.put("lib42/itemA", {"key": "itemA", "version": 4})

        with pytest.raises(ConsistencyMismatchError):
            await main.handle_notification(s3_notification("ObjectCreated:Put", "lib42/itemA", "stale"), ctx)

    @pytest.mark.asyncio
    async def test_handle_drain(self, ctx, queue) -> None:
        queue.push(json.dumps({"variant": "Removed", "collectionId": "lib42", "itemKey": "itemA"}))

        response = await main.handle_drain(ctx, lambda: 300.0)

        assert response["state"] == "stopped_on_empty"
        assert response["processed"] == 1

    @pytest.mark.asyncio
    async def test_direct_reindex_completes(self, ctx, store) -> None:
        store.put("lib42/itemA", {"key": "itemA", "version": 1})

        response = await main.handle_reindex({"collectionId": "lib42"}, ctx, lambda: 300.0)

        assert response["state"] == "completed"
        assert response["enqueued"] == 1

    @pytest.mark.asyncio
    async def test_direct_reindex_reraises_when_incomplete(self, ctx, store) -> None:
        store.put("lib42/itemA", {"key": "itemA", "version": 1})

        with pytest.raises(ReindexIncompleteError):
            await main.handle_reindex({"collectionId": "lib42"}, ctx, lambda: 1.0)

    @pytest.mark.asyncio
    async def test_queued_reindex_reports_pending_records(self, ctx) -> None:
        response = await main.handle_reindex(sqs_reindex_event("lib42", "lib43"), ctx, lambda: 1.0)

        assert response["results"] == []
        assert response["batchItemFailures"] == [{"itemIdentifier": "msg-lib42"}, {"itemIdentifier": "msg-lib43"}]

    @pytest.mark.asyncio
    async def test_queued_reindex_completes(self, ctx) -> None:
        response = await main.handle_reindex(sqs_reindex_event("lib42", "lib43"), ctx, lambda: 300.0)

        assert response["batchItemFailures"] == []
        assert [r["collection_id"] for r in response["results"]] == ["lib42", "lib43"]

    @pytest.mark.asyncio
    async def test_queued_reindex_skips_malformed_records(self, ctx, store, queue) -> None:
        store.put("lib42/itemA", {"key": "itemA", "version": 1})
        event = sqs_reindex_event("lib42")
        event["Records"] += [
            {"messageId": "msg-no-collection", "body": json.dumps({"nope": 1})},
            {"messageId": "msg-not-json", "body": "{not json"},
            {"messageId": "msg-nested", "body": json.dumps({"collectionId": "lib42/nested"})},
            {"messageId": "msg-list", "body": "[1, 2]"},
        ]

        response = await main.handle_reindex(event, ctx, lambda: 300.0)

        assert response["batchItemFailures"] == []
        assert [r["collection_id"] for r in response["results"]] == ["lib42"]
        assert response["discarded"] == ["msg-no-collection", "msg-not-json", "msg-nested", "msg-list"]
        assert len(queue.batches) == 1

    @pytest.mark.asyncio
    async def test_queued_reindex_does_not_redeliver_malformed_pending_records(self, ctx) -> None:
        event = sqs_reindex_event("lib42")
        event["Records"].append({"messageId": "msg-bad", "body": json.dumps({})})
        event["Records"] += sqs_reindex_event("lib43")["Records"]

        response = await main.handle_reindex(event, ctx, lambda: 1.0)

        assert response["batchItemFailures"] == [{"itemIdentifier": "msg-lib42"}, {"itemIdentifier": "msg-lib43"}]

    @pytest.mark.asyncio
    async def test_corrupt_checkpoint_is_discarded_for_queued_request(self, ctx, store) -> None:
        store.put("lib42/_reindex_status", b"{corrupt")

        response = await main.handle_reindex(sqs_reindex_event("lib42", "lib43"), ctx, lambda: 300.0)

        assert response["discarded"] == ["msg-lib42"]
        assert [r["collection_id"] for r in response["results"]] == ["lib43"]

    @pytest.mark.asyncio
    async def test_reindex_request_without_collection(self, ctx) -> None:
        with pytest.raises(MalformedInputError):
            await main.handle_reindex({}, ctx, lambda: 300.0)


class TestLambdaEntryPoints:
    @pytest.fixture(autouse=True)
    def fake_context(self, monkeypatch, settings, ctx):
        monkeypatch.setattr(main, "get_cached_settings", lambda: settings)
        monkeypatch.setattr(main.SyncContext, "from_settings", classmethod(lambda cls, s: ctx))

    def test_s3_handler(self, store) -> None:
        etag = store.put("lib42/itemA", {"key": "itemA", "version": 1})

        assert main.s3_handler(s3_notification("ObjectCreated:Put", "lib42/itemA", etag), None) == {
            "outcome": "indexed"
        }

    def test_dlq_handler_uses_lambda_remaining_time(self) -> None:
        lambda_context = MagicMock()
        lambda_context.get_remaining_time_in_millis.return_value = 5000

        response = main.dlq_handler({}, lambda_context)

        assert response["state"] == "stopped_on_timeout"


class TestContext:
    def test_deadline_counts_down(self) -> None:
        now = [100.0]
        deadline = Deadline(30.0, clock=lambda: now[0])

        now[0] = 110.0
        assert deadline.remaining_seconds() == 20.0
        now[0] = 200.0
        assert deadline.remaining_seconds() == 0.0

    def test_lambda_remaining_seconds(self) -> None:
        lambda_context = MagicMock()
        lambda_context.get_remaining_time_in_millis.return_value = 12500

        assert lambda_remaining_seconds(lambda_context)() == 12.5

    def test_direct_replay_by_default(self, ctx) -> None:
        assert isinstance(ctx.drainer().replayer, DirectReplayer)

    def test_invoke_replay_mode(self, ctx, settings) -> None:
        ctx.settings = settings.model_copy(update={"replay_mode": "invoke", "primary_function_name": "docsync-primary"})

        replayer = ctx.drainer().replayer

        assert isinstance(replayer, LambdaReplayer)
        assert replayer.function_name == "docsync-primary"
