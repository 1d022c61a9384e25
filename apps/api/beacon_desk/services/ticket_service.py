from __future__ import annotations

import logging

from sqlalchemy import exists, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core import clock
from ..core.errors import AccessDenied, Conflict, NotFound, ValidationFailed
from ..core.rbac import Principal, admin_domains, can_administer, is_domain_engineer
from ..core.ticket_rules import REOPENABLE, can_transition
from ..models.enums import (
    ApprovalState,
    EventType,
    OPEN_STATUSES,
    TicketPriority,
    TicketStatus,
    TicketType,
)
from ..models.event import TicketEvent
from ..models.ticket import Ticket, TicketApproval, TicketAssignment
from ..models.user import User
from ..schemas.ticket import TicketCreateIn, TicketUpdateIn
from . import assignment_service
from .approval_service import list_approvals, start_approval_chain
from .event_log import append_event, list_events
from .lifecycle import get_ticket, transition_status
from .mail_events import (
    ApprovalRequested,
    TicketCreated,
    TicketNoteAdded,
    TicketPriorityChanged,
    TicketReopened,
    TicketStatusChanged,
)
from .mail_service import MailTransport
from .notification_dispatcher import notify_safely
from .numbering import generate_ticket_number

logger = logging.getLogger(__name__)

NUMBERING_ATTEMPTS = 5
DOMAINS = ("IT", "TRAVEL")


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def create_ticket(
    session: Session,
    transport: MailTransport,
    principal: Principal,
    data: TicketCreateIn,
) -> Ticket:
    requester = session.get(User, principal.user_id)
    if not requester:
        raise NotFound("Requester not found")

    title = _clean(data.title)
    description = _clean(data.description)
    if not title:
        raise ValidationFailed("Title is required")
    if not description:
        raise ValidationFailed("Description is required")

    ticket: Ticket | None = None
    for attempt in range(NUMBERING_ATTEMPTS):
        now = clock.utcnow()
        candidate = Ticket(
            ticket_number=generate_ticket_number(session, data.type),
            type=data.type,
            domain=data.type.value,
            title=title,
            description=description,
            category=_clean(data.category),
            subcategory=_clean(data.subcategory),
            impact=_clean(data.impact),
            priority=data.priority,
            status=TicketStatus.OPEN,
            requester_id=requester.id,
            project_code=_clean(data.project_code),
            project_name=_clean(data.project_name),
            created_at=now,
            updated_at=now,
        )
        session.add(candidate)
        try:
            session.flush()
        except IntegrityError:
            # lost the race for this number
            session.rollback()
            logger.info("ticket number %s taken, retrying (attempt %s)", candidate.ticket_number, attempt + 1)
            continue
        ticket = candidate
        break

    if ticket is None:
        raise Conflict("Could not allocate a ticket number, please retry")

    append_event(
        session,
        ticket.id,
        EventType.CREATED,
        requester.id,
        {"ticketNumber": ticket.ticket_number, "type": ticket.type.value},
        created_at=ticket.created_at,
    )
    approval = start_approval_chain(session, ticket, requester)
    session.commit()
    logger.info("ticket %s created by %s (status=%s)", ticket.ticket_number, requester.id, ticket.status.value)

    notify_safely(session, transport, TicketCreated(ticket_id=ticket.id, actor_id=requester.id))
    if approval is not None:
        notify_safely(
            session,
            transport,
            ApprovalRequested(
                ticket_id=ticket.id,
                actor_id=requester.id,
                level=approval.level,
                approver_emails=(approval.approver_email,),
            ),
        )
    return ticket


def can_view(session: Session, ticket: Ticket, principal: Principal) -> bool:
    if ticket.requester_id == principal.user_id:
        return True
    if can_administer(principal, ticket.domain):
        return True
    active = assignment_service.get_active_assignment(session, ticket.id)
    if active:
        return active.engineer_id == principal.user_id
    return is_domain_engineer(principal, ticket.domain)


def get_ticket_for(session: Session, ticket_id: int, principal: Principal) -> Ticket:
    ticket = get_ticket(session, ticket_id)
    if not can_view(session, ticket, principal):
        raise AccessDenied()
    return ticket


def get_ticket_detail(session: Session, ticket_id: int, principal: Principal) -> dict:
    ticket = get_ticket_for(session, ticket_id, principal)
    return {
        "ticket": ticket,
        "assignments": assignment_service.list_assignments(session, ticket.id),
        "approvals": list_approvals(session, ticket.id),
        "events": list_events(session, ticket.id),
    }


def get_ticket_events(session: Session, ticket_id: int, principal: Principal) -> list[TicketEvent]:
    ticket = get_ticket_for(session, ticket_id, principal)
    return list_events(session, ticket.id)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _active_assignment_for(user_id: int):
    return exists().where(
        TicketAssignment.ticket_id == Ticket.id,
        TicketAssignment.unassigned_at.is_(None),
        TicketAssignment.engineer_id == user_id,
    )


def _any_active_assignment():
    return exists().where(
        TicketAssignment.ticket_id == Ticket.id,
        TicketAssignment.unassigned_at.is_(None),
    )


def list_tickets(
    session: Session,
    principal: Principal,
    *,
    scope: str = "mine",
    status: TicketStatus | None = None,
    priority: TicketPriority | None = None,
    ticket_type: TicketType | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Ticket], int]:
    stmt = select(Ticket)

    if scope == "mine":
        stmt = stmt.where(Ticket.requester_id == principal.user_id)
    elif scope == "assigned":
        stmt = stmt.where(_active_assignment_for(principal.user_id))
    elif scope == "unassigned":
        domains = [d for d in DOMAINS if is_domain_engineer(principal, d)]
        if not domains:
            raise AccessDenied("Engineer role required")
        stmt = stmt.where(
            Ticket.domain.in_(domains),
            Ticket.status.in_(OPEN_STATUSES),
            ~_any_active_assignment(),
        )
    elif scope == "all":
        domains = admin_domains(principal)
        if domains is not None:
            if not domains:
                raise AccessDenied()
            stmt = stmt.where(Ticket.domain.in_(sorted(domains)))
    else:
        raise ValidationFailed(f"Unknown scope: {scope}")

    if status:
        stmt = stmt.where(Ticket.status == status)
    if priority:
        stmt = stmt.where(Ticket.priority == priority)
    if ticket_type:
        stmt = stmt.where(Ticket.type == ticket_type)
    term = _clean(search)
    if term:
        like = f"%{_escape_like(term)}%"
        stmt = stmt.where(
            or_(
                Ticket.title.ilike(like, escape="\\"),
                Ticket.description.ilike(like, escape="\\"),
                Ticket.ticket_number.ilike(like, escape="\\"),
            )
        )

    total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
    rows = session.scalars(
        stmt.order_by(Ticket.created_at.desc(), Ticket.id.desc()).offset(max(offset, 0)).limit(max(1, min(limit, 200)))
    ).all()
    return list(rows), total


def _is_active_assignee(session: Session, ticket: Ticket, principal: Principal) -> bool:
    active = assignment_service.get_active_assignment(session, ticket.id)
    return bool(active and active.engineer_id == principal.user_id)


def change_status(
    session: Session,
    transport: MailTransport,
    ticket_id: int,
    principal: Principal,
    new_status: TicketStatus,
) -> Ticket:
    ticket = get_ticket(session, ticket_id, for_update=True)
    if not (can_administer(principal, ticket.domain) or _is_active_assignee(session, ticket, principal)):
        raise AccessDenied()
    if ticket.status == new_status:
        return ticket
    old_status = ticket.status
    if not can_transition(old_status, new_status):
        raise Conflict(f"Invalid transition: {old_status.value} -> {new_status.value}")

    transition_status(session, ticket, new_status, principal.user_id)
    session.commit()
    logger.info("ticket %s status %s -> %s", ticket.ticket_number, old_status.value, new_status.value)
    notify_safely(
        session,
        transport,
        TicketStatusChanged(
            ticket_id=ticket.id, actor_id=principal.user_id, old_status=old_status, new_status=new_status
        ),
    )
    return ticket


def change_priority(
    session: Session,
    transport: MailTransport,
    ticket_id: int,
    principal: Principal,
    new_priority: TicketPriority,
) -> Ticket:
    ticket = get_ticket(session, ticket_id, for_update=True)
    if not (can_administer(principal, ticket.domain) or _is_active_assignee(session, ticket, principal)):
        raise AccessDenied()
    if ticket.priority == new_priority:
        return ticket
    old_priority = ticket.priority
    now = clock.utcnow()
    ticket.priority = new_priority
    ticket.updated_at = now
    append_event(
        session,
        ticket.id,
        EventType.PRIORITY_CHANGED,
        principal.user_id,
        {"oldPriority": old_priority.value, "newPriority": new_priority.value},
        created_at=now,
    )
    session.commit()
    notify_safely(
        session,
        transport,
        TicketPriorityChanged(
            ticket_id=ticket.id,
            actor_id=principal.user_id,
            old_priority=old_priority,
            new_priority=new_priority,
        ),
    )
    return ticket


def patch_ticket(
    session: Session,
    transport: MailTransport,
    ticket_id: int,
    principal: Principal,
    data: TicketUpdateIn,
) -> Ticket:
    if data.assignee_id is not None and data.unassign:
        raise ValidationFailed("assignee_id and unassign cannot be combined")

    ticket = get_ticket(session, ticket_id)
    if data.status is not None:
        ticket = change_status(session, transport, ticket_id, principal, data.status)
    if data.priority is not None:
        ticket = change_priority(session, transport, ticket_id, principal, data.priority)
    if data.unassign:
        assignment_service.unassign(session, ticket_id, principal)
    if data.assignee_id is not None:
        assignment_service.assign(session, transport, ticket_id, data.assignee_id, principal)
    session.refresh(ticket)
    return ticket


def add_note(
    session: Session,
    transport: MailTransport,
    ticket_id: int,
    principal: Principal,
    body: str,
) -> TicketEvent:
    ticket = get_ticket(session, ticket_id)
    from_requester = ticket.requester_id == principal.user_id
    if not (
        from_requester
        or can_administer(principal, ticket.domain)
        or _is_active_assignee(session, ticket, principal)
    ):
        raise AccessDenied()
    note = _clean(body)
    if not note:
        raise ValidationFailed("Note is required")

    event = append_event(
        session,
        ticket.id,
        EventType.NOTE_ADDED,
        principal.user_id,
        {"note": note, "fromRequester": from_requester},
    )
    session.commit()
    notify_safely(
        session,
        transport,
        TicketNoteAdded(ticket_id=ticket.id, actor_id=principal.user_id, note=note, from_requester=from_requester),
    )
    return event


def acknowledge(session: Session, transport: MailTransport, ticket_id: int, principal: Principal) -> Ticket:
    ticket = get_ticket(session, ticket_id, for_update=True)
    if ticket.requester_id != principal.user_id:
        raise AccessDenied("Only the requester can acknowledge this ticket")
    if ticket.status != TicketStatus.RESOLVED:
        raise Conflict("Only resolved tickets can be acknowledged")

    transition_status(session, ticket, TicketStatus.CLOSED, principal.user_id, acknowledged=True)
    session.commit()
    notify_safely(
        session,
        transport,
        TicketStatusChanged(
            ticket_id=ticket.id,
            actor_id=principal.user_id,
            old_status=TicketStatus.RESOLVED,
            new_status=TicketStatus.CLOSED,
        ),
    )
    return ticket


def reopen(
    session: Session,
    transport: MailTransport,
    ticket_id: int,
    principal: Principal,
    reason: str | None = None,
) -> Ticket:
    ticket = get_ticket(session, ticket_id, for_update=True)
    if ticket.requester_id != principal.user_id:
        raise AccessDenied("Only the requester can reopen this ticket")
    if ticket.status not in REOPENABLE:
        raise Conflict("Only resolved or closed tickets can be reopened")
    rejected = session.scalar(
        select(func.count(TicketApproval.id)).where(
            TicketApproval.ticket_id == ticket.id,
            TicketApproval.state == ApprovalState.REJECTED,
        )
    )
    if rejected:
        raise Conflict("Rejected requests cannot be reopened")

    reason = _clean(reason)
    transition_status(session, ticket, TicketStatus.OPEN, principal.user_id, reopened=True, reason=reason)
    session.commit()
    logger.info("ticket %s reopened by %s", ticket.ticket_number, principal.user_id)
    notify_safely(
        session,
        transport,
        TicketReopened(ticket_id=ticket.id, actor_id=principal.user_id, reason=reason),
    )
    return ticket
