from pydantic import BaseModel, Field
from datetime import datetime

from ..models.enums import TicketPriority, TicketStatus, TicketType
from .approval import ApprovalOut
from .event import EventOut


class TicketCreateIn(BaseModel):
    type: TicketType = TicketType.IT
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    category: str | None = Field(default=None, max_length=100)
    subcategory: str | None = Field(default=None, max_length=100)
    impact: str | None = Field(default=None, max_length=64)
    priority: TicketPriority = TicketPriority.MEDIUM
    project_code: str | None = Field(default=None, max_length=64)
    project_name: str | None = Field(default=None, max_length=200)


class TicketUpdateIn(BaseModel):
    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    assignee_id: int | None = None
    unassign: bool = False


class NoteIn(BaseModel):
    note: str = Field(min_length=1, max_length=5000)


class ReopenIn(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class TicketOut(BaseModel):
    id: int
    ticket_number: str
    type: TicketType
    domain: str
    title: str
    description: str
    category: str | None = None
    subcategory: str | None = None
    impact: str | None = None
    status: TicketStatus
    priority: TicketPriority
    requester_id: int
    project_code: str | None = None
    project_name: str | None = None
    created_at: datetime
    updated_at: datetime | None = None
    resolved_at: datetime | None = None
    closed_at: datetime | None = None

    class Config:
        from_attributes = True


class TicketListOut(BaseModel):
    items: list[TicketOut]
    total: int
    limit: int
    offset: int


class AssignmentOut(BaseModel):
    id: int
    engineer_id: int
    assigned_by: int
    assigned_at: datetime
    unassigned_at: datetime | None = None
    unassigned_by: int | None = None

    class Config:
        from_attributes = True


class TicketDetailOut(BaseModel):
    ticket: TicketOut
    assignments: list[AssignmentOut] = Field(default_factory=list)
    approvals: list[ApprovalOut] = Field(default_factory=list)
    events: list[EventOut] = Field(default_factory=list)
