from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any

from ..models.enums import EventType


class EventOut(BaseModel):
    id: int
    ticket_id: int
    created_by: int | None = None
    type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None

    class Config:
        from_attributes = True
