"""
Per-invocation context for the sync pipeline.

Every handler builds one SyncContext, passes its clients to the
components it runs, and closes it before returning. Nothing is shared
between invocations apart from the cached settings.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..utils.logging import get_sync_logger, log_sync_event
from .config import SyncSettings
from .dlq_handler import DeadLetterDrainer, DirectReplayer, LambdaReplayer, Replayer
from .opensearch_client import OpenSearchClient
from .pipeline import SyncPipeline
from .queue import RetryQueue
from .reindex import ReindexOrchestrator
from .storage import ObjectStore

events_logger = get_sync_logger(__name__)


class Deadline:
    """Monotonic time budget for runs outside Lambda."""

    def __init__(self, budget_seconds: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._deadline = clock() + budget_seconds

    def remaining_seconds(self) -> float:
        return max(0.0, self._deadline - self._clock())


def lambda_remaining_seconds(context: Any) -> Callable[[], float]:
    """Remaining-time callable backed by a Lambda context object."""
    return lambda: context.get_remaining_time_in_millis() / 1000.0


@dataclass
class SyncContext:
    settings: SyncSettings
    store: ObjectStore
    queue: RetryQueue
    search: OpenSearchClient
    replayer: Optional[Replayer] = field(default=None)

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> "SyncContext":
        return cls(
            settings=settings,
            store=ObjectStore(settings),
            queue=RetryQueue(settings),
            search=OpenSearchClient(settings),
        )

    def pipeline(self) -> SyncPipeline:
        return SyncPipeline(self.store, self.search)

    def drainer(self) -> DeadLetterDrainer:
        replayer = self.replayer
        if replayer is None:
            if self.settings.replay_mode == "invoke" and self.settings.primary_function_name:
                replayer = LambdaReplayer(self.settings.primary_function_name, self.settings)
            else:
                replayer = DirectReplayer(self.pipeline())
        return DeadLetterDrainer(self.queue, replayer, self.settings)

    def reindexer(self) -> ReindexOrchestrator:
        return ReindexOrchestrator(self.store, self.queue, self.settings)

    async def close(self) -> None:
        log_sync_event(events_logger, "queue_stats", **self.queue.get_stats())
        await self.search.close()

    async def __aenter__(self) -> "SyncContext":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
