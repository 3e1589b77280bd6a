from .checkpoint import ReindexCheckpoint
from .documents import IndexDocument
from .events import ChangeEvent, ChangeVariant
from .queue import RetryMessage
from .results import DrainResult, DrainState, IndexOutcome, ReindexResult, ReindexState
from .storage import ListedObject, ObjectPage, StoredObject

__all__ = [
    # events
    "ChangeEvent",
    "ChangeVariant",
    # documents
    "IndexDocument",
    # storage
    "StoredObject",
    "ListedObject",
    "ObjectPage",
    # queue
    "RetryMessage",
    # checkpoint
    "ReindexCheckpoint",
    # results
    "IndexOutcome",
    "DrainState",
    "DrainResult",
    "ReindexState",
    "ReindexResult",
]
