from pydantic import BaseModel, Field
from datetime import datetime
from typing import Literal

from ..models.enums import ApprovalLevel, ApprovalState, TicketPriority, TicketStatus


class ApprovalOut(BaseModel):
    id: int
    ticket_id: int
    level: ApprovalLevel
    approver_email: str
    approver_user_id: int | None = None
    state: ApprovalState
    note: str | None = None
    requested_at: datetime
    decided_at: datetime | None = None

    class Config:
        from_attributes = True


class PendingApprovalOut(ApprovalOut):
    ticket_number: str
    title: str
    ticket_status: TicketStatus
    priority: TicketPriority
    requester_id: int


class ApprovalDecisionIn(BaseModel):
    action: Literal["approve", "reject"]
    note: str | None = Field(default=None, max_length=2000)
