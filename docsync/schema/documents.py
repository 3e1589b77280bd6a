from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, Field


class IndexDocument(BaseModel):
    id: str
    version: int = Field(..., ge=0)
    routing: str
    payload: Dict[str, Any] = Field(default_factory=dict)
