from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ChangeVariant(str, Enum):
    CREATED = "Created"
    REMOVED = "Removed"


class ChangeEvent(BaseModel):
    """
    One object mutation in the store.

    Serialized with camelCase aliases so the retry queue body stays
    compatible with synthetic events produced by a reindex run.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    variant: ChangeVariant
    # Document ids split at the first "/"
    collection_id: str = Field(..., alias="collectionId", min_length=1, pattern=r"^[^/]+$")
    item_key: str = Field(..., alias="itemKey", min_length=1)
    content_fingerprint: Optional[str] = Field(None, alias="contentFingerprint")

    @model_validator(mode="after")
    def validate_fingerprint(self) -> "ChangeEvent":
        if self.variant is ChangeVariant.CREATED and not self.content_fingerprint:
            raise ValueError("Created events require a content fingerprint")
        return self

    @property
    def document_id(self) -> str:
        return f"{self.collection_id}/{self.item_key}"

    @property
    def object_key(self) -> str:
        return f"{self.collection_id}/{self.item_key}"

    def to_message_body(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def created(cls, collection_id: str, item_key: str, fingerprint: str) -> "ChangeEvent":
        return cls(
            variant=ChangeVariant.CREATED,
            collection_id=collection_id,
            item_key=item_key,
            content_fingerprint=fingerprint,
        )

    @classmethod
    def removed(cls, collection_id: str, item_key: str) -> "ChangeEvent":
        return cls(variant=ChangeVariant.REMOVED, collection_id=collection_id, item_key=item_key)
