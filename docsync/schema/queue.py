from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class RetryMessage(BaseModel):
    """A leased message from the retry queue."""

    body: str
    receipt_handle: str
    message_id: Optional[str] = None
    visibility_deadline: datetime
    receive_count: int = 1
