from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_session
from ..core.current_user import get_current_principal
from ..core.rbac import Principal
from ..models.enums import TicketPriority, TicketStatus, TicketType
from ..schemas.event import EventOut
from ..schemas.ticket import (
    AssignmentOut,
    NoteIn,
    ReopenIn,
    TicketCreateIn,
    TicketDetailOut,
    TicketListOut,
    TicketOut,
    TicketUpdateIn,
)
from ..services import assignment_service, ticket_service
from ..services.mail_service import MailTransport, get_mail_transport

router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.post("", response_model=TicketOut, status_code=201)
def create_ticket(
    payload: TicketCreateIn,
    session: Session = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
    transport: MailTransport = Depends(get_mail_transport),
):
    return ticket_service.create_ticket(session, transport, principal, payload)


@router.get("", response_model=TicketListOut)
def list_tickets(
    scope: str = Query(default="mine", pattern="^(mine|assigned|unassigned|all)$"),
    status: TicketStatus | None = None,
    priority: TicketPriority | None = None,
    type: TicketType | None = None,
    search: str | None = Query(default=None, max_length=200),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    session: Session = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
):
    items, total = ticket_service.list_tickets(
        session,
        principal,
        scope=scope,
        status=status,
        priority=priority,
        ticket_type=type,
        search=search,
        limit=limit,
        offset=offset,
    )
    return TicketListOut(
        items=[TicketOut.model_validate(t) for t in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{ticket_id}", response_model=TicketDetailOut)
def get_ticket(
    ticket_id: int,
    session: Session = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
):
    return ticket_service.get_ticket_detail(session, ticket_id, principal)


@router.patch("/{ticket_id}", response_model=TicketOut)
def update_ticket(
    ticket_id: int,
    payload: TicketUpdateIn,
    session: Session = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
    transport: MailTransport = Depends(get_mail_transport),
):
    return ticket_service.patch_ticket(session, transport, ticket_id, principal, payload)


@router.post("/{ticket_id}/claim", response_model=AssignmentOut)
def claim_ticket(
    ticket_id: int,
    session: Session = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
    transport: MailTransport = Depends(get_mail_transport),
):
    return assignment_service.claim(session, transport, ticket_id, principal)


@router.post("/{ticket_id}/notes", response_model=EventOut, status_code=201)
def add_note(
    ticket_id: int,
    payload: NoteIn,
    session: Session = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
    transport: MailTransport = Depends(get_mail_transport),
):
    return ticket_service.add_note(session, transport, ticket_id, principal, payload.note)


@router.post("/{ticket_id}/acknowledge", response_model=TicketOut)
def acknowledge_ticket(
    ticket_id: int,
    session: Session = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
    transport: MailTransport = Depends(get_mail_transport),
):
    return ticket_service.acknowledge(session, transport, ticket_id, principal)


@router.post("/{ticket_id}/reopen", response_model=TicketOut)
def reopen_ticket(
    ticket_id: int,
    payload: ReopenIn | None = None,
    session: Session = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
    transport: MailTransport = Depends(get_mail_transport),
):
    reason = payload.reason if payload else None
    return ticket_service.reopen(session, transport, ticket_id, principal, reason)


@router.get("/{ticket_id}/events", response_model=list[EventOut])
def list_ticket_events(
    ticket_id: int,
    session: Session = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
):
    return ticket_service.get_ticket_events(session, ticket_id, principal)
