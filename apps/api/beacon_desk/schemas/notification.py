from pydantic import AliasChoices, BaseModel, Field
from datetime import datetime
from typing import Any

from ..models.enums import NotificationStatus


class NotificationFailureOut(BaseModel):
    id: int
    channel: str
    domain: str
    event: str
    ticket_id: int | None = None
    actor_id: int | None = None
    recipients: list[str] = Field(default_factory=list)
    cc: list[str] = Field(default_factory=list)
    subject: str
    error_message: str | None = None
    meta: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("meta", "metadata"),
        serialization_alias="metadata",
    )
    status: NotificationStatus
    attempts: int
    last_attempt_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class NotificationFailureListOut(BaseModel):
    failures: list[NotificationFailureOut]
    page: int
    limit: int
    total: int
    total_pages: int
