from __future__ import annotations

import logging

from sqlalchemy import DateTime, Integer, insert, literal, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core import clock
from ..core.errors import AccessDenied, Conflict, NotFound
from ..core.rbac import Principal, is_domain_engineer, require_domain_admin
from ..models.enums import EventType, TicketStatus
from ..models.ticket import Ticket, TicketAssignment
from ..models.user import User
from .event_log import append_event
from .lifecycle import get_ticket, transition_status
from .mail_events import TicketAssigned, TicketStatusChanged
from .mail_service import MailTransport
from .notification_dispatcher import notify_safely

logger = logging.getLogger(__name__)

ALREADY_ASSIGNED = "Ticket is already assigned to an engineer"
_UNASSIGNABLE = (TicketStatus.PENDING_APPROVAL, TicketStatus.CLOSED)


def get_active_assignment(session: Session, ticket_id: int) -> TicketAssignment | None:
    stmt = select(TicketAssignment).where(
        TicketAssignment.ticket_id == ticket_id,
        TicketAssignment.unassigned_at.is_(None),
    )
    return session.scalars(stmt).first()


def list_assignments(session: Session, ticket_id: int) -> list[TicketAssignment]:
    stmt = (
        select(TicketAssignment)
        .where(TicketAssignment.ticket_id == ticket_id)
        .order_by(TicketAssignment.assigned_at.asc(), TicketAssignment.id.asc())
    )
    return list(session.scalars(stmt).all())


def _ensure_assignable(ticket: Ticket) -> None:
    if ticket.status in _UNASSIGNABLE:
        raise Conflict(f"Ticket cannot be assigned while {ticket.status.value}")


def _start_work(session: Session, ticket: Ticket, actor_id: int) -> TicketStatus | None:
    """OPEN tickets move to IN_PROGRESS once someone owns them."""
    if ticket.status != TicketStatus.OPEN:
        return None
    transition_status(session, ticket, TicketStatus.IN_PROGRESS, actor_id)
    return TicketStatus.OPEN


def _raise_if_taken(session: Session, ticket_id: int, replaced_id: int | None = None) -> None:
    """After a rolled-back write: Conflict when another active assignment won."""
    active = get_active_assignment(session, ticket_id)
    if active is not None and active.id != replaced_id:
        raise Conflict(ALREADY_ASSIGNED)


def _commit_or_conflict(session: Session, ticket_id: int, replaced_id: int | None = None) -> None:
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        _raise_if_taken(session, ticket_id, replaced_id)
        raise


def assign(
    session: Session,
    transport: MailTransport,
    ticket_id: int,
    engineer_id: int,
    principal: Principal,
) -> TicketAssignment:
    ticket = get_ticket(session, ticket_id, for_update=True)
    require_domain_admin(principal, ticket.domain)
    engineer = session.get(User, engineer_id)
    if not engineer:
        raise NotFound("Engineer not found")
    _ensure_assignable(ticket)

    current = get_active_assignment(session, ticket.id)
    if current and current.engineer_id == engineer.id:
        return current
    replaced_id = current.id if current else None

    now = clock.utcnow()
    session.execute(
        update(TicketAssignment)
        .where(TicketAssignment.ticket_id == ticket.id, TicketAssignment.unassigned_at.is_(None))
        .values(unassigned_at=now, unassigned_by=principal.user_id)
    )
    assignment = TicketAssignment(
        ticket_id=ticket.id,
        engineer_id=engineer.id,
        assigned_by=principal.user_id,
        assigned_at=now,
    )
    session.add(assignment)
    try:
        session.flush()
    except IntegrityError:
        session.rollback()
        _raise_if_taken(session, ticket_id, replaced_id)
        raise

    append_event(
        session,
        ticket.id,
        EventType.ASSIGNED,
        principal.user_id,
        {"engineerId": engineer.id, "previousEngineerId": current.engineer_id if current else None},
        created_at=now,
    )
    old_status = _start_work(session, ticket, principal.user_id)
    _commit_or_conflict(session, ticket_id, replaced_id)
    logger.info("ticket %s assigned to user %s by %s", ticket.ticket_number, engineer.id, principal.user_id)

    notify_safely(
        session,
        transport,
        TicketAssigned(ticket_id=ticket.id, actor_id=principal.user_id, engineer_id=engineer.id),
    )
    if old_status is not None:
        notify_safely(
            session,
            transport,
            TicketStatusChanged(
                ticket_id=ticket.id,
                actor_id=principal.user_id,
                old_status=old_status,
                new_status=ticket.status,
            ),
        )
    return assignment


def claim(
    session: Session,
    transport: MailTransport,
    ticket_id: int,
    principal: Principal,
) -> TicketAssignment:
    """Take an unassigned ticket. Concurrent claims: exactly one wins."""
    ticket = get_ticket(session, ticket_id)
    if not is_domain_engineer(principal, ticket.domain):
        raise AccessDenied(f"{ticket.domain} engineer role required")
    if not session.get(User, principal.user_id):
        raise NotFound("Engineer not found")
    _ensure_assignable(ticket)

    now = clock.utcnow()
    active = (
        select(TicketAssignment.id)
        .where(TicketAssignment.ticket_id == ticket.id, TicketAssignment.unassigned_at.is_(None))
        .correlate(None)
        .exists()
    )
    # conditional write: the row is inserted only while no active row exists
    stmt = insert(TicketAssignment).from_select(
        ["ticket_id", "engineer_id", "assigned_by", "assigned_at"],
        select(
            literal(ticket.id, Integer),
            literal(principal.user_id, Integer),
            literal(principal.user_id, Integer),
            literal(now, DateTime(timezone=True)),
        ).where(~active),
    )
    try:
        result = session.execute(stmt)
    except IntegrityError:
        session.rollback()
        _raise_if_taken(session, ticket_id)
        raise
    if result.rowcount == 0:
        session.rollback()
        raise Conflict(ALREADY_ASSIGNED)

    assignment = get_active_assignment(session, ticket.id)
    append_event(
        session,
        ticket.id,
        EventType.ASSIGNED,
        principal.user_id,
        {"engineerId": principal.user_id, "action": "claimed"},
        created_at=now,
    )
    old_status = _start_work(session, ticket, principal.user_id)
    _commit_or_conflict(session, ticket_id)
    logger.info("ticket %s claimed by %s", ticket.ticket_number, principal.user_id)

    if old_status is not None:
        notify_safely(
            session,
            transport,
            TicketStatusChanged(
                ticket_id=ticket.id,
                actor_id=principal.user_id,
                old_status=old_status,
                new_status=ticket.status,
            ),
        )
    return assignment


def unassign(session: Session, ticket_id: int, principal: Principal) -> TicketAssignment:
    ticket = get_ticket(session, ticket_id, for_update=True)
    require_domain_admin(principal, ticket.domain)
    current = get_active_assignment(session, ticket.id)
    if not current:
        raise NotFound("Ticket has no active assignment")

    now = clock.utcnow()
    current.unassigned_at = now
    current.unassigned_by = principal.user_id
    append_event(
        session,
        ticket.id,
        EventType.ASSIGNED,
        principal.user_id,
        {"engineerId": current.engineer_id, "action": "unassigned"},
        created_at=now,
    )
    session.commit()
    logger.info("ticket %s unassigned from %s", ticket.ticket_number, current.engineer_id)
    return current
