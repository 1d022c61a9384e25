from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..core import clock
from ..core.config import settings
from ..core.errors import Conflict, NotFound, NotificationDeliveryError, ValidationFailed
from ..models.enums import NotificationStatus
from ..models.notification_failure import NotificationFailure
from ..models.ticket import Ticket, TicketAssignment
from ..models.user import User
from .mail_events import MailContext, TicketMailEvent, build_message
from .mail_service import MailTransport, OutboundMessage, SendResult

logger = logging.getLogger(__name__)


def desk_email_for(domain: str | None) -> str:
    if domain == "TRAVEL":
        return settings.travel_desk_email
    return settings.it_servicedesk_email


def active_assignee(session: Session, ticket_id: int) -> User | None:
    stmt = (
        select(User)
        .join(TicketAssignment, TicketAssignment.engineer_id == User.id)
        .where(TicketAssignment.ticket_id == ticket_id, TicketAssignment.unassigned_at.is_(None))
    )
    return session.scalars(stmt).first()


def load_context(session: Session, event: TicketMailEvent) -> MailContext:
    ticket = session.get(Ticket, event.ticket_id)
    if not ticket:
        raise NotFound("Ticket not found")
    requester = session.get(User, ticket.requester_id)
    actor = session.get(User, event.actor_id) if event.actor_id else None
    return MailContext(
        ticket=ticket,
        requester=requester,
        assignee=active_assignee(session, ticket.id),
        actor=actor,
        desk_email=desk_email_for(ticket.domain),
    )


def _send(transport: MailTransport, message: OutboundMessage) -> SendResult:
    try:
        return transport.send(message)
    except Exception as exc:
        logger.exception("mail transport raised: %s", message.subject)
        return SendResult(ok=False, error=str(exc) or exc.__class__.__name__)


def record_failure(
    session: Session,
    *,
    event_name: str,
    domain: str,
    message: OutboundMessage,
    error: str,
    ticket_id: int | None = None,
    actor_id: int | None = None,
    metadata: dict[str, Any] | None = None,
) -> NotificationFailure:
    now = clock.utcnow()
    row = NotificationFailure(
        channel="EMAIL",
        domain=domain,
        event=event_name,
        ticket_id=ticket_id,
        actor_id=actor_id,
        recipients=list(message.to),
        cc=list(message.cc),
        subject=message.subject,
        html_body=message.html_body,
        text_body=message.text_body,
        error_message=error,
        meta=metadata or {},
        status=NotificationStatus.FAILED,
        attempts=1,
        last_attempt_at=now,
        created_at=now,
    )
    session.add(row)
    session.commit()
    session.refresh(row)
    logger.warning("notification journaled as failed: id=%s event=%s error=%s", row.id, event_name, error)
    return row


def deliver(
    session: Session,
    transport: MailTransport,
    message: OutboundMessage,
    *,
    event_name: str,
    domain: str,
    ticket_id: int | None = None,
    actor_id: int | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Send once. On failure, journal the rendered message and raise."""
    result = _send(transport, message)
    if result.ok:
        return
    error = result.error or "Failed to send email"
    row = record_failure(
        session,
        event_name=event_name,
        domain=domain,
        message=message,
        error=error,
        ticket_id=ticket_id,
        actor_id=actor_id,
        metadata=metadata,
    )
    raise NotificationDeliveryError(error, failure_id=row.id)


def dispatch(session: Session, transport: MailTransport, event: TicketMailEvent) -> bool:
    """Render and send the mail for ``event``. Returns False when nobody is addressed."""
    ctx = load_context(session, event)
    message = build_message(event, ctx)
    if not message.to:
        logger.info("no recipients for %s on ticket %s, skipped", event.name, event.ticket_id)
        return False
    deliver(
        session,
        transport,
        message,
        event_name=event.name,
        domain=ctx.ticket.domain,
        ticket_id=ctx.ticket.id,
        actor_id=event.actor_id,
        metadata={
            "requesterEmail": ctx.requester_email,
            "assigneeEmail": ctx.assignee_email,
        },
    )
    return True


def notify_safely(session: Session, transport: MailTransport, event: TicketMailEvent) -> bool:
    """Dispatch after the triggering change is committed; a failed send never undoes it."""
    try:
        return dispatch(session, transport, event)
    except NotificationDeliveryError as exc:
        logger.warning(
            "notification %s for ticket %s failed (failure_id=%s)", event.name, event.ticket_id, exc.failure_id
        )
        return False


def retry_failure(session: Session, transport: MailTransport, failure_id: int) -> NotificationFailure:
    row = session.get(NotificationFailure, failure_id)
    if not row:
        raise NotFound("Notification not found.")
    if row.status == NotificationStatus.SENT:
        raise Conflict("Notification was already sent.")

    recipients = list(row.recipients or [])
    if not recipients or not row.subject:
        raise ValidationFailed("Notification payload missing.")

    message = OutboundMessage(
        to=recipients,
        cc=list(row.cc or []),
        subject=row.subject,
        html_body=row.html_body or "",
        text_body=row.text_body or "",
    )
    result = _send(transport, message)

    row.attempts = (row.attempts or 0) + 1
    row.last_attempt_at = clock.utcnow()
    if result.ok:
        row.status = NotificationStatus.SENT
        row.error_message = None
        session.commit()
        session.refresh(row)
        logger.info("notification %s resent (attempts=%s)", row.id, row.attempts)
        return row

    row.status = NotificationStatus.FAILED
    row.error_message = result.error or "Retry failed"
    session.commit()
    raise NotificationDeliveryError(row.error_message, failure_id=row.id)


def list_failures(
    session: Session,
    *,
    domain: str = "IT",
    status: NotificationStatus | None = None,
    event: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[NotificationFailure], int]:
    limit = max(1, min(limit, 200))
    page = max(page, 1)

    stmt = select(NotificationFailure).where(NotificationFailure.domain == domain)
    if status:
        stmt = stmt.where(NotificationFailure.status == status)
    if event:
        stmt = stmt.where(NotificationFailure.event == event)

    total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
    rows = session.scalars(
        stmt.order_by(NotificationFailure.created_at.desc(), NotificationFailure.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return list(rows), total
