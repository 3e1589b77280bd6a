from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class IndexOutcome(str, Enum):
    INDEXED = "indexed"
    STALE_VERSION = "stale_version"
    DELETED = "deleted"
    ALREADY_ABSENT = "already_absent"
    OBJECT_GONE = "object_gone"
    SKIPPED = "skipped"


class DrainState(str, Enum):
    DRAINING = "draining"
    STOPPED_ON_TIMEOUT = "stopped_on_timeout"
    STOPPED_ON_EMPTY = "stopped_on_empty"
    STOPPED_ON_ERROR = "stopped_on_error"


class DrainResult(BaseModel):
    state: DrainState = DrainState.DRAINING
    processed: int = 0
    superseded: int = 0
    discarded: int = 0
    last_error: Optional[str] = None


class ReindexState(str, Enum):
    STARTING = "starting"
    PAGING = "paging"
    COMPLETED = "completed"
    STOPPED_ON_TIMEOUT = "stopped_on_timeout"


class ReindexResult(BaseModel):
    collection_id: str
    state: ReindexState = ReindexState.STARTING
    pages: int = 0
    enqueued: int = 0
    last_key: Optional[str] = None
