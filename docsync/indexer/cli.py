"""
CLI entry point for the sync pipeline.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import yaml

from ..utils.logging import setup_sync_logger
from .config import SyncSettings, load_settings
from .context import Deadline, SyncContext
from .exceptions import ConfigurationException, ReindexIncompleteError, SyncException
from .main import handle_drain, handle_notification

# sysexits.h EX_TEMPFAIL: run again to resume
EXIT_RESUMABLE = 75


async def health_check(settings: SyncSettings) -> bool:
    """Perform health check on all required services."""
    print("Performing health checks...")

    async with SyncContext.from_settings(settings) as ctx:
        if await ctx.store.health_check():
            print("✅ S3 bucket accessible")
        else:
            print("❌ S3 bucket not accessible")
            return False

        try:
            depth = await ctx.queue.get_queue_depth()
            print(f"✅ SQS retry queue accessible ({depth['visible']} visible, {depth['in_flight']} in flight)")
        except SyncException as e:
            print(f"❌ SQS retry queue not accessible: {e}")
            return False

        if await ctx.search.health_check():
            print("✅ OpenSearch cluster accessible")
        else:
            print("❌ OpenSearch cluster unhealthy")
            return False

    print("🎉 All health checks passed!")
    return True


async def setup_index(settings: SyncSettings) -> bool:
    async with SyncContext.from_settings(settings) as ctx:
        return await ctx.search.create_index_if_not_exists()


async def index_notification(settings: SyncSettings, path: Path) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        notification = json.load(f)
    async with SyncContext.from_settings(settings) as ctx:
        return await handle_notification(notification, ctx)


async def drain(settings: SyncSettings, budget: float) -> dict:
    deadline = Deadline(budget)
    async with SyncContext.from_settings(settings) as ctx:
        return await handle_drain(ctx, deadline.remaining_seconds)


async def reindex(settings: SyncSettings, collection_id: str, budget: float) -> dict:
    deadline = Deadline(budget)
    async with SyncContext.from_settings(settings) as ctx:
        result = await ctx.reindexer().run(collection_id, deadline.remaining_seconds)
        return result.model_dump(mode="json")


def print_config(settings: SyncSettings) -> None:
    """Show configuration (without sensitive data)."""
    print("Sync Configuration:")
    print(f"  Environment: {settings.environment}")
    print(f"  AWS Region: {settings.aws_region}")
    print(f"  S3 Bucket: {settings.s3_bucket}")
    print(f"  Retry Queue: {settings.sqs_retry_queue_url}")
    print(f"  OpenSearch: {settings.opensearch_endpoint} (index {settings.opensearch_index})")
    print(f"  Replay Mode: {settings.replay_mode}")
    if settings.primary_function_name:
        print(f"  Primary Function: {settings.primary_function_name}")
    print(f"  Drain Margin: {settings.drain_safety_margin}s (lease {settings.drain_visibility_timeout}s)")
    print(f"  Reindex Page Size: {settings.reindex_page_size}")
    print(f"  Queue Batch Size: {settings.queue_batch_size}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Search index sync pipeline")
    parser.add_argument(
        "--log-level", default=None, choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging level"
    )
    parser.add_argument("--json-logs", action="store_true", help="Output logs in JSON format")
    parser.add_argument("--config-file", type=Path, default=None, help="YAML configuration file")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("config", help="Show configuration")
    subparsers.add_parser("health", help="Check S3, SQS and OpenSearch")
    subparsers.add_parser("setup-index", help="Create the search index if missing")

    index_parser = subparsers.add_parser("index", help="Apply one notification JSON file")
    index_parser.add_argument("notification", type=Path)

    drain_parser = subparsers.add_parser("drain", help="Drain the retry queue")
    drain_parser.add_argument("--budget", type=float, default=300.0, help="Time budget in seconds")

    reindex_parser = subparsers.add_parser("reindex", help="Reindex one collection")
    reindex_parser.add_argument("collection_id")
    reindex_parser.add_argument("--budget", type=float, default=900.0, help="Time budget in seconds")

    return parser


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(config_file=args.config_file)
    except (ConfigurationException, FileNotFoundError, yaml.YAMLError) as e:
        logging.error(f"Failed to load configuration: {e}")
        return 1

    setup_sync_logger("docsync", level=args.log_level or settings.log_level, json_logs=args.json_logs)

    try:
        if args.command == "config":
            print_config(settings)
            return 0

        if args.command == "health":
            return 0 if asyncio.run(health_check(settings)) else 1

        if args.command == "setup-index":
            return 0 if asyncio.run(setup_index(settings)) else 1

        if args.command == "index":
            output = asyncio.run(index_notification(settings, args.notification))
        elif args.command == "drain":
            output = asyncio.run(drain(settings, args.budget))
        else:
            output = asyncio.run(reindex(settings, args.collection_id, args.budget))

    except ReindexIncompleteError as e:
        print(json.dumps({"status": "incomplete", "collectionId": e.collection_id, "lastKey": e.last_key}))
        return EXIT_RESUMABLE
    except SyncException as e:
        logging.error(f"{args.command} failed: {type(e).__name__}: {e}")
        return 1

    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
