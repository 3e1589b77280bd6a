from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class StoredObject(BaseModel):
    bucket: str
    key: str
    etag: str
    body: bytes
    content_type: Optional[str] = None
    content_encoding: Optional[str] = None


class ListedObject(BaseModel):
    key: str
    etag: str


class ObjectPage(BaseModel):
    objects: List[ListedObject] = Field(default_factory=list)
    is_truncated: bool = False

    @property
    def last_key(self) -> Optional[str]:
        return self.objects[-1].key if self.objects else None
