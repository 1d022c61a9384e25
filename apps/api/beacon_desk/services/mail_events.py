from __future__ import annotations

from dataclasses import dataclass
from functools import singledispatch
from typing import ClassVar

from ..models.enums import ApprovalLevel, TicketPriority, TicketStatus
from ..models.ticket import Ticket
from ..models.user import User
from .mail_notifications import (
    build_subject,
    priority_label,
    render_ticket_mail,
    status_label,
    user_label,
)
from .mail_service import OutboundMessage, unique_recipients


@dataclass(frozen=True, kw_only=True)
class TicketMailEvent:
    name: ClassVar[str] = ""

    ticket_id: int
    actor_id: int | None = None


@dataclass(frozen=True, kw_only=True)
class TicketCreated(TicketMailEvent):
    name: ClassVar[str] = "ticket_created"


@dataclass(frozen=True, kw_only=True)
class TicketAssigned(TicketMailEvent):
    name: ClassVar[str] = "ticket_assigned"

    engineer_id: int


@dataclass(frozen=True, kw_only=True)
class TicketStatusChanged(TicketMailEvent):
    name: ClassVar[str] = "ticket_status_changed"

    old_status: TicketStatus
    new_status: TicketStatus


@dataclass(frozen=True, kw_only=True)
class TicketPriorityChanged(TicketMailEvent):
    name: ClassVar[str] = "ticket_priority_changed"

    old_priority: TicketPriority
    new_priority: TicketPriority


@dataclass(frozen=True, kw_only=True)
class TicketNoteAdded(TicketMailEvent):
    name: ClassVar[str] = "ticket_note_added"

    note: str
    from_requester: bool


@dataclass(frozen=True, kw_only=True)
class TicketReopened(TicketMailEvent):
    name: ClassVar[str] = "ticket_reopened"

    reason: str | None = None


@dataclass(frozen=True, kw_only=True)
class ApprovalRequested(TicketMailEvent):
    name: ClassVar[str] = "approval_requested"

    level: ApprovalLevel
    approver_emails: tuple[str, ...]


@dataclass(frozen=True, kw_only=True)
class ApprovalProgress(TicketMailEvent):
    name: ClassVar[str] = "approval_progress"

    level: ApprovalLevel
    approver_email: str
    fully_approved: bool


@dataclass(frozen=True, kw_only=True)
class ApprovalRejected(TicketMailEvent):
    name: ClassVar[str] = "approval_rejected"

    level: ApprovalLevel
    approver_email: str
    reason: str | None = None


@dataclass(frozen=True, kw_only=True)
class SlaWarning(TicketMailEvent):
    name: ClassVar[str] = "SLA_WARNING"

    elapsed_minutes: int
    target_minutes: int


@dataclass(frozen=True, kw_only=True)
class SlaBreach(TicketMailEvent):
    name: ClassVar[str] = "SLA_BREACH"

    elapsed_minutes: int
    target_minutes: int


@dataclass(frozen=True, kw_only=True)
class AutoCloseReminder(TicketMailEvent):
    name: ClassVar[str] = "AUTO_CLOSE_REMINDER"

    day: int


@dataclass(frozen=True, kw_only=True)
class AutoClosed(TicketMailEvent):
    name: ClassVar[str] = "AUTO_CLOSED"

    after_days: int


@dataclass
class MailContext:
    ticket: Ticket
    requester: User | None
    assignee: User | None
    actor: User | None
    desk_email: str

    @property
    def requester_email(self) -> str | None:
        return self.requester.email if self.requester else None

    @property
    def assignee_email(self) -> str | None:
        return self.assignee.email if self.assignee else None

    @property
    def actor_name(self) -> str:
        if not self.actor:
            return "Beacon"
        return self.actor.name or self.actor.email.split("@")[0]


def _message(
    ctx: MailContext,
    *,
    to: list[str | None],
    summary: str,
    subject: str,
    alert_type: str,
    fields: list[tuple[str, str]] | None = None,
    cc: list[str | None] | None = None,
    is_admin_link: bool = False,
) -> OutboundMessage:
    text, html = render_ticket_mail(
        ticket=ctx.ticket,
        alert_type=alert_type,
        summary=summary,
        fields=fields or [],
        is_admin_link=is_admin_link,
    )
    recipients = unique_recipients(to)
    lowered = {r.lower() for r in recipients}
    copies = [c for c in unique_recipients(cc or []) if c.lower() not in lowered]
    return OutboundMessage(
        to=recipients,
        cc=copies,
        subject=build_subject(ctx.ticket, subject),
        html_body=html,
        text_body=text,
    )


@singledispatch
def build_message(event: TicketMailEvent, ctx: MailContext) -> OutboundMessage:
    raise TypeError(f"no mail template for {type(event).__name__}")


@build_message.register
def _(event: TicketCreated, ctx: MailContext) -> OutboundMessage:
    return _message(
        ctx,
        to=[ctx.desk_email, ctx.requester_email],
        subject="created",
        summary=f"A new {ctx.ticket.type.value} request has been created.",
        alert_type="New request",
        fields=[("Requester", user_label(ctx.requester))],
    )


@build_message.register
def _(event: TicketAssigned, ctx: MailContext) -> OutboundMessage:
    return _message(
        ctx,
        to=[ctx.assignee_email],
        subject="assigned to you",
        summary="You have been assigned a ticket.",
        alert_type="Assignment",
        fields=[("Requester", user_label(ctx.requester))],
        is_admin_link=True,
    )


@build_message.register
def _(event: TicketStatusChanged, ctx: MailContext) -> OutboundMessage:
    new_label = status_label(event.new_status)
    return _message(
        ctx,
        to=[ctx.requester_email, ctx.assignee_email],
        subject=f"status {event.new_status.value}",
        summary=f"Status update from {ctx.actor_name}.",
        alert_type="Status change",
        fields=[
            ("Previous status", status_label(event.old_status)),
            ("New status", new_label),
        ],
    )


@build_message.register
def _(event: TicketPriorityChanged, ctx: MailContext) -> OutboundMessage:
    return _message(
        ctx,
        to=[ctx.assignee_email, ctx.desk_email],
        subject=f"priority {event.new_priority.value}",
        summary=f"Priority updated by {ctx.actor_name}.",
        alert_type="Priority change",
        fields=[
            ("Previous priority", priority_label(event.old_priority)),
            ("New priority", priority_label(event.new_priority)),
        ],
        is_admin_link=True,
    )


@build_message.register
def _(event: TicketNoteAdded, ctx: MailContext) -> OutboundMessage:
    target = ctx.assignee_email if event.from_requester else ctx.requester_email
    return _message(
        ctx,
        to=[target],
        subject="new note",
        summary=f"{ctx.actor_name} added a note.",
        alert_type="Note",
        fields=[("Note", event.note)],
        is_admin_link=event.from_requester,
    )


@build_message.register
def _(event: TicketReopened, ctx: MailContext) -> OutboundMessage:
    fields = [("Reason", event.reason)] if event.reason else []
    return _message(
        ctx,
        to=[ctx.assignee_email, ctx.desk_email],
        subject="reopened",
        summary=f"{ctx.actor_name} reopened this ticket.",
        alert_type="Reopened",
        fields=fields,
        is_admin_link=True,
    )


@build_message.register
def _(event: ApprovalRequested, ctx: MailContext) -> OutboundMessage:
    cc = [ctx.requester_email] if event.level == ApprovalLevel.TRAVEL_ADMIN else []
    return _message(
        ctx,
        to=list(event.approver_emails),
        cc=cc,
        subject="approval requested",
        summary="A travel request is waiting for your approval.",
        alert_type="Approval request",
        fields=[
            ("Requester", user_label(ctx.requester)),
            ("Approval stage", event.level.value),
        ],
    )


@build_message.register
def _(event: ApprovalProgress, ctx: MailContext) -> OutboundMessage:
    if event.fully_approved:
        subject = "fully approved"
        summary = "Your request has been fully approved and is now open."
    else:
        subject = "partially approved"
        summary = f"{event.approver_email} approved your request. Further approval is pending."
    return _message(
        ctx,
        to=[ctx.requester_email],
        subject=subject,
        summary=summary,
        alert_type="Approval",
        fields=[("Approval stage", event.level.value)],
    )


@build_message.register
def _(event: ApprovalRejected, ctx: MailContext) -> OutboundMessage:
    return _message(
        ctx,
        to=[ctx.requester_email],
        subject="rejected",
        summary=f"{event.approver_email} rejected your request.",
        alert_type="Approval",
        fields=[
            ("Approval stage", event.level.value),
            ("Reason", event.reason or "-"),
        ],
    )


@build_message.register
def _(event: SlaWarning, ctx: MailContext) -> OutboundMessage:
    return _message(
        ctx,
        to=[ctx.assignee_email, ctx.desk_email],
        subject="SLA warning",
        summary="SLA is nearing breach.",
        alert_type="SLA warning",
        fields=[
            ("Elapsed", f"{event.elapsed_minutes} mins"),
            ("Target", f"{event.target_minutes} mins"),
        ],
        is_admin_link=True,
    )


@build_message.register
def _(event: SlaBreach, ctx: MailContext) -> OutboundMessage:
    return _message(
        ctx,
        to=[ctx.assignee_email, ctx.desk_email],
        subject="SLA breached",
        summary="SLA breached.",
        alert_type="SLA breach",
        fields=[
            ("Elapsed", f"{event.elapsed_minutes} mins"),
            ("Target", f"{event.target_minutes} mins"),
        ],
        is_admin_link=True,
    )


@build_message.register
def _(event: AutoCloseReminder, ctx: MailContext) -> OutboundMessage:
    return _message(
        ctx,
        to=[ctx.requester_email],
        subject="pending confirmation",
        summary="Your ticket was marked resolved. Please confirm or reopen if you still need help.",
        alert_type="Reminder",
        fields=[("Resolved for", f"{event.day} days")],
    )


@build_message.register
def _(event: AutoClosed, ctx: MailContext) -> OutboundMessage:
    return _message(
        ctx,
        to=[ctx.requester_email],
        subject="closed",
        summary=f"Your ticket was closed after {event.after_days} days.",
        alert_type="Closed",
    )
