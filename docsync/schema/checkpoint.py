from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReindexCheckpoint(BaseModel):
    """
    Resume marker for a collection reindex.

    ``last_key`` is the last object key whose page was confirmed on the
    retry queue. The next run lists strictly after it.
    """

    model_config = ConfigDict(populate_by_name=True)

    collection_id: str = Field(..., alias="collectionId")
    last_key: Optional[str] = Field(None, alias="lastKey")
    pages_completed: int = Field(0, alias="pagesCompleted", ge=0)
    keys_enqueued: int = Field(0, alias="keysEnqueued", ge=0)
    started_at: datetime = Field(default_factory=_utcnow, alias="startedAt")
    updated_at: datetime = Field(default_factory=_utcnow, alias="updatedAt")

    def advance(self, last_key: str, enqueued: int) -> "ReindexCheckpoint":
        return self.model_copy(
            update={
                "last_key": last_key,
                "pages_completed": self.pages_completed + 1,
                "keys_enqueued": self.keys_enqueued + enqueued,
                "updated_at": _utcnow(),
            }
        )

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")
