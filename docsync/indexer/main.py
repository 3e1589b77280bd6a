"""
Lambda entry points.

- ``s3_handler``: invoked once per object store notification; failures
  propagate so the dispatcher routes the notification to the retry queue.
- ``dlq_handler``: scheduled drain of the retry queue.
- ``reindex_handler``: one collection reindex per request, invoked
  directly or through an SQS trigger.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Mapping, Optional

from ..utils.logging import setup_sync_logger
from .config import SyncSettings, get_cached_settings
from .context import SyncContext, lambda_remaining_seconds
from .exceptions import MalformedInputError, ReindexIncompleteError

logger = logging.getLogger(__name__)

_logging_configured = False


def _prepare(settings: Optional[SyncSettings] = None) -> SyncSettings:
    global _logging_configured
    settings = settings or get_cached_settings()
    if not _logging_configured:
        setup_sync_logger("docsync", level=settings.log_level, json_logs=settings.json_logs)
        _logging_configured = True
    return settings


async def handle_notification(event: Mapping[str, Any], ctx: SyncContext) -> Dict[str, Any]:
    outcome = await ctx.pipeline().process_notification(event)
    return {"outcome": outcome.value}


async def handle_drain(ctx: SyncContext, remaining_seconds) -> Dict[str, Any]:
    result = await ctx.drainer().drain(remaining_seconds)
    return result.model_dump(mode="json")


def _reindex_requests(event: Mapping[str, Any]) -> List[Dict[str, Optional[str]]]:
    """Extract collection id, SQS message id and any parse error per reindex request."""
    records = event.get("Records")
    if not isinstance(records, list):
        return [_reindex_request(event.get("collectionId"), None)]

    requests = []
    for record in records:
        message_id = record.get("messageId") if isinstance(record, dict) else None
        try:
            body = json.loads(record.get("body") or "{}")
        except (json.JSONDecodeError, AttributeError, TypeError) as e:
            requests.append({"collection_id": None, "message_id": message_id, "error": f"body is not JSON: {e}"})
            continue
        if not isinstance(body, dict):
            requests.append({"collection_id": None, "message_id": message_id, "error": "body is not a JSON object"})
            continue
        requests.append(_reindex_request(body.get("collectionId"), message_id))
    return requests


def _reindex_request(collection_id: Any, message_id: Optional[str]) -> Dict[str, Optional[str]]:
    error = None
    if not isinstance(collection_id, str) or not collection_id:
        error = "no collectionId"
    elif "/" in collection_id:
        error = f"invalid collectionId {collection_id!r}"
    return {
        "collection_id": collection_id if error is None else None,
        "message_id": message_id,
        "error": error,
    }


async def handle_reindex(event: Mapping[str, Any], ctx: SyncContext, remaining_seconds) -> Dict[str, Any]:
    """
    Run the reindex requests carried by ``event``.

    A direct request that runs out of time re-raises ReindexIncompleteError.
    SQS-triggered requests report it, together with the records not yet
    started, as ``batchItemFailures`` so they are redelivered. Malformed
    SQS records are logged and dropped; a redelivery could never fix them.
    """
    requests = _reindex_requests(event)
    from_queue = isinstance(event.get("Records"), list)
    reindexer = ctx.reindexer()

    results: List[Dict[str, Any]] = []
    discarded: List[Optional[str]] = []
    for position, request in enumerate(requests):
        if request["error"] is not None:
            if not from_queue:
                raise MalformedInputError(f"Reindex request has {request['error']}")
            logger.error(f"Discarding reindex record {request['message_id']}: {request['error']}")
            discarded.append(request["message_id"])
            continue

        try:
            result = await reindexer.run(request["collection_id"], remaining_seconds)
        except MalformedInputError as e:
            if not from_queue:
                raise
            logger.error(f"Discarding reindex record {request['message_id']}: {e}")
            discarded.append(request["message_id"])
            continue
        except ReindexIncompleteError as e:
            logger.warning(f"{e}; requesting redelivery")
            if not from_queue:
                raise
            pending = [r for r in requests[position:] if r["error"] is None]
            return {
                "results": results,
                "discarded": discarded,
                "batchItemFailures": [{"itemIdentifier": r["message_id"]} for r in pending],
            }
        results.append(result.model_dump(mode="json"))

    if from_queue:
        return {"results": results, "discarded": discarded, "batchItemFailures": []}
    return results[0]


async def _with_context(settings: SyncSettings, runner):
    async with SyncContext.from_settings(settings) as ctx:
        return await runner(ctx)


def s3_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    settings = _prepare()
    return asyncio.run(_with_context(settings, lambda ctx: handle_notification(event, ctx)))


def dlq_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    settings = _prepare()
    remaining = lambda_remaining_seconds(context)
    return asyncio.run(_with_context(settings, lambda ctx: handle_drain(ctx, remaining)))


def reindex_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    settings = _prepare()
    remaining = lambda_remaining_seconds(context)
    return asyncio.run(_with_context(settings, lambda ctx: handle_reindex(event, ctx, remaining)))
