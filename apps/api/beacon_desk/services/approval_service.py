from __future__ import annotations

import logging

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..core import clock
from ..core.errors import AccessDenied, NotFound, ValidationFailed
from ..core.rbac import ADMIN_TRAVEL, SUPER_ADMIN, Principal
from ..models.enums import ApprovalLevel, ApprovalState, EventType, TicketStatus, TicketType
from ..models.ticket import Ticket, TicketApproval
from ..models.user import User
from .event_log import append_event
from .lifecycle import get_ticket, transition_status
from .mail_events import ApprovalProgress, ApprovalRejected, ApprovalRequested
from .mail_service import MailTransport
from .notification_dispatcher import notify_safely
from .users import get_travel_admins, get_user_by_email

logger = logging.getLogger(__name__)

NOT_FOUND_OR_PROCESSED = "Approval not found or already processed"


def _request_approvals(
    session: Session,
    ticket: Ticket,
    level: ApprovalLevel,
    approvers: list[tuple[str, int | None]],
    actor_id: int | None,
) -> list[TicketApproval]:
    now = clock.utcnow()
    rows = [
        TicketApproval(
            ticket_id=ticket.id,
            level=level,
            approver_email=email,
            approver_user_id=user_id,
            state=ApprovalState.PENDING,
            requested_at=now,
        )
        for email, user_id in approvers
    ]
    session.add_all(rows)
    append_event(
        session,
        ticket.id,
        EventType.APPROVAL_REQUESTED,
        actor_id,
        {"level": level.value, "approverEmails": [email for email, _ in approvers]},
        created_at=now,
    )
    return rows


def start_approval_chain(session: Session, ticket: Ticket, requester: User) -> TicketApproval | None:
    """Travel tickets wait on the requester's supervisor before anything else.

    Returns the supervisor row, or None when no chain applies and the ticket
    stays OPEN. Does not commit.
    """
    if ticket.type != TicketType.TRAVEL or not requester.supervisor_email:
        return None

    supervisor = get_user_by_email(session, requester.supervisor_email)
    ticket.status = TicketStatus.PENDING_APPROVAL
    (row,) = _request_approvals(
        session,
        ticket,
        ApprovalLevel.SUPERVISOR,
        [(requester.supervisor_email, supervisor.id if supervisor else None)],
        requester.id,
    )
    return row


def list_approvals(session: Session, ticket_id: int) -> list[TicketApproval]:
    stmt = (
        select(TicketApproval)
        .where(TicketApproval.ticket_id == ticket_id)
        .order_by(TicketApproval.requested_at.asc(), TicketApproval.id.asc())
    )
    return list(session.scalars(stmt).all())


def list_pending_approvals(session: Session, principal: Principal) -> list[tuple[TicketApproval, Ticket]]:
    stmt = (
        select(TicketApproval, Ticket)
        .join(Ticket, Ticket.id == TicketApproval.ticket_id)
        .where(
            func.lower(TicketApproval.approver_email) == principal.email.lower(),
            TicketApproval.state == ApprovalState.PENDING,
            Ticket.status == TicketStatus.PENDING_APPROVAL,
        )
        .order_by(TicketApproval.requested_at.desc(), TicketApproval.id.desc())
    )
    return [(approval, ticket) for approval, ticket in session.execute(stmt).all()]


def _pending_count(session: Session, ticket_id: int) -> int:
    stmt = select(func.count(TicketApproval.id)).where(
        TicketApproval.ticket_id == ticket_id,
        TicketApproval.state == ApprovalState.PENDING,
    )
    return session.scalar(stmt) or 0


def decide_approval(
    session: Session,
    transport: MailTransport,
    approval_id: int,
    principal: Principal,
    *,
    approve: bool,
    note: str | None = None,
) -> TicketApproval:
    approval = session.get(TicketApproval, approval_id)
    if not approval:
        raise NotFound(NOT_FOUND_OR_PROCESSED)
    if approval.level == ApprovalLevel.TRAVEL_ADMIN and not principal.has_any(ADMIN_TRAVEL, SUPER_ADMIN):
        raise AccessDenied("Travel admin role required")

    ticket = get_ticket(session, approval.ticket_id, for_update=True)
    if ticket.type != TicketType.TRAVEL:
        raise ValidationFailed("Only travel tickets can be approved")

    now = clock.utcnow()
    note = (note or "").strip() or None
    new_state = ApprovalState.APPROVED if approve else ApprovalState.REJECTED

    # compare-and-set: only a PENDING row owned by the caller on a ticket still awaiting approval
    result = session.execute(
        update(TicketApproval)
        .where(
            TicketApproval.id == approval.id,
            func.lower(TicketApproval.approver_email) == principal.email.lower(),
            TicketApproval.state == ApprovalState.PENDING,
            TicketApproval.ticket_id.in_(
                select(Ticket.id).where(Ticket.status == TicketStatus.PENDING_APPROVAL)
            ),
        )
        .values(state=new_state, decided_at=now, note=note, approver_user_id=principal.user_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        session.rollback()
        raise NotFound(NOT_FOUND_OR_PROCESSED)
    session.refresh(approval)

    append_event(
        session,
        ticket.id,
        EventType.APPROVED if approve else EventType.REJECTED,
        principal.user_id,
        {
            "approvalId": approval.id,
            "approverEmail": approval.approver_email,
            "note": note,
            "level": approval.level.value,
        },
        created_at=now,
    )

    if not approve:
        transition_status(
            session, ticket, TicketStatus.CLOSED, principal.user_id, reason=note, approvalLevel=approval.level.value
        )
        session.commit()
        logger.info("ticket %s rejected at %s stage", ticket.ticket_number, approval.level.value)
        notify_safely(
            session,
            transport,
            ApprovalRejected(
                ticket_id=ticket.id,
                actor_id=principal.user_id,
                level=approval.level,
                approver_email=approval.approver_email,
                reason=note,
            ),
        )
        return approval

    fan_out: list[TicketApproval] = []
    if approval.level == ApprovalLevel.SUPERVISOR:
        admins = get_travel_admins(session)
        if admins:
            fan_out = _request_approvals(
                session,
                ticket,
                ApprovalLevel.TRAVEL_ADMIN,
                [(admin.email, admin.id) for admin in admins],
                principal.user_id,
            )
        else:
            logger.warning("no travel admins configured; ticket %s opens after supervisor approval", ticket.ticket_number)

    session.flush()
    fully_approved = _pending_count(session, ticket.id) == 0
    if fully_approved:
        transition_status(session, ticket, TicketStatus.OPEN, principal.user_id)
    session.commit()
    logger.info(
        "ticket %s approved at %s stage (fully_approved=%s)",
        ticket.ticket_number,
        approval.level.value,
        fully_approved,
    )

    if fan_out:
        notify_safely(
            session,
            transport,
            ApprovalRequested(
                ticket_id=ticket.id,
                actor_id=principal.user_id,
                level=ApprovalLevel.TRAVEL_ADMIN,
                approver_emails=tuple(row.approver_email for row in fan_out),
            ),
        )
    notify_safely(
        session,
        transport,
        ApprovalProgress(
            ticket_id=ticket.id,
            actor_id=principal.user_id,
            level=approval.level,
            approver_email=approval.approver_email,
            fully_approved=fully_approved,
        ),
    )
    return approval
