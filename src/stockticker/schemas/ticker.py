"""Pydantic schemas for the ticker API.

Learn: stock rows are returned as plain dicts — their attribute names come
from the configured field mapping, so there's no fixed model for them.
Only the ticker's own status has a fixed shape.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class TickerStats(BaseModel):
    source: str
    state: str
    observed: int
    dispatched: int
    ignored: int
    rejected: int = 0
    errors: int
    delivered: int
    dropped: int
    subscribers: int
    in_flight: int
    started_at: Optional[datetime] = None
    last_error: Optional[str] = None
