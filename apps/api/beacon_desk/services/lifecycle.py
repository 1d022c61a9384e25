from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core import clock
from ..core.errors import NotFound
from ..models.enums import EventType, TicketStatus
from ..models.event import TicketEvent
from ..models.ticket import Ticket
from .event_log import append_event


def get_ticket(session: Session, ticket_id: int, *, for_update: bool = False) -> Ticket:
    stmt = select(Ticket).where(Ticket.id == ticket_id)
    if for_update:
        stmt = stmt.with_for_update()
    ticket = session.scalars(stmt).first()
    if not ticket:
        raise NotFound("Ticket not found")
    return ticket


def transition_status(
    session: Session,
    ticket: Ticket,
    new_status: TicketStatus,
    actor_id: int | None,
    **extra,
) -> TicketEvent:
    """Move ``ticket`` to ``new_status`` and append the STATUS_CHANGED row.

    resolved_at is stamped only on entering RESOLVED and closed_at only on
    entering CLOSED; any other target clears both. Does not commit.
    """
    old_status = ticket.status
    now = clock.utcnow()

    if new_status == TicketStatus.RESOLVED:
        ticket.resolved_at = now
        ticket.closed_at = None
    elif new_status == TicketStatus.CLOSED:
        ticket.closed_at = now
    else:
        ticket.resolved_at = None
        ticket.closed_at = None

    ticket.status = new_status
    ticket.updated_at = now

    payload = {"oldStatus": old_status.value, "newStatus": new_status.value, **extra}
    return append_event(session, ticket.id, EventType.STATUS_CHANGED, actor_id, payload, created_at=now)
