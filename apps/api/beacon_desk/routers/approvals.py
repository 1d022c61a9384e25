from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_session
from ..core.current_user import get_current_principal
from ..core.rbac import Principal
from ..schemas.approval import ApprovalDecisionIn, ApprovalOut, PendingApprovalOut
from ..services import approval_service
from ..services.mail_service import MailTransport, get_mail_transport

router = APIRouter(prefix="/approvals", tags=["approvals"])


@router.get("", response_model=list[PendingApprovalOut])
def list_pending(
    session: Session = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
):
    rows = approval_service.list_pending_approvals(session, principal)
    return [
        PendingApprovalOut(
            **ApprovalOut.model_validate(approval).model_dump(),
            ticket_number=ticket.ticket_number,
            title=ticket.title,
            ticket_status=ticket.status,
            priority=ticket.priority,
            requester_id=ticket.requester_id,
        )
        for approval, ticket in rows
    ]


@router.post("/{approval_id}/decision", response_model=ApprovalOut)
def decide(
    approval_id: int,
    payload: ApprovalDecisionIn,
    session: Session = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
    transport: MailTransport = Depends(get_mail_transport),
):
    return approval_service.decide_approval(
        session,
        transport,
        approval_id,
        principal,
        approve=payload.action == "approve",
        note=payload.note,
    )
