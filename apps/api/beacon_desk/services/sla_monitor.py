from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
import logging
import math
import threading
import time
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core import clock
from ..core.config import settings
from ..db import SessionLocal
from ..models.enums import OPEN_STATUSES, EventType, TicketPriority, TicketStatus
from ..models.event import TicketEvent
from ..models.ticket import Ticket
from .event_log import append_event, dedupe_key, has_event, key_recorded, load_event_map
from .lifecycle import transition_status
from .mail_events import AutoClosed, AutoCloseReminder, SlaBreach, SlaWarning
from .mail_service import MailTransport, get_mail_transport
from .notification_dispatcher import notify_safely
from .sla_config import get_sla_targets

logger = logging.getLogger(__name__)

_SCANNED_EVENTS = (
    EventType.STATUS_CHANGED,
    EventType.SLA_WARNING,
    EventType.SLA_BREACH,
    EventType.AUTO_CLOSE_REMINDER,
    EventType.AUTO_CLOSED,
)


@dataclass
class SlaRunResult:
    warnings_sent: int = 0
    breaches_sent: int = 0
    reminders_sent: int = 0
    auto_closed: int = 0
    total_tickets: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def to_minutes(delta: timedelta) -> int:
    """Whole minutes, half rounded up, never negative."""
    return max(0, math.floor(delta.total_seconds() / 60 + 0.5))


def compute_waiting_minutes(events: Iterable[TicketEvent], now: datetime) -> int:
    """Minutes spent in WAITING_ON_REQUESTER according to STATUS_CHANGED history.

    Each entry into the waiting state is paired with the next change out of
    it, or with ``now`` while the ticket is still waiting.
    """
    status_events = sorted(
        (ev for ev in events if ev.type == EventType.STATUS_CHANGED),
        key=lambda ev: (clock.as_utc(ev.created_at), ev.id or 0),
    )
    waiting = 0
    since: datetime | None = None
    for ev in status_events:
        entered = (ev.payload or {}).get("newStatus") == TicketStatus.WAITING_ON_REQUESTER.value
        if entered and since is None:
            since = clock.as_utc(ev.created_at)
        elif not entered and since is not None:
            waiting += to_minutes(clock.as_utc(ev.created_at) - since)
            since = None
    if since is not None:
        waiting += to_minutes(now - since)
    return waiting


def effective_elapsed_minutes(ticket: Ticket, events: Iterable[TicketEvent], now: datetime) -> int:
    elapsed = to_minutes(now - clock.as_utc(ticket.created_at))
    return max(0, elapsed - compute_waiting_minutes(events, now))


def _record_once(
    session: Session,
    ticket: Ticket,
    event_type: EventType,
    payload: dict[str, Any],
    key: str,
    actor_id: int | None,
    now: datetime,
) -> bool:
    """Insert a fire-once event and commit. False when another run got there first.

    Any other integrity failure propagates to the per-ticket handler.
    """
    try:
        append_event(session, ticket.id, event_type, actor_id, payload, key=key, created_at=now)
        session.commit()
    except IntegrityError:
        session.rollback()
        if not key_recorded(session, ticket.id, key):
            raise
        logger.info("%s already recorded for ticket %s, skipped", key, ticket.id)
        return False
    return True


def _check_open_ticket(
    session: Session,
    transport: MailTransport,
    ticket: Ticket,
    events: list[TicketEvent],
    targets: dict[TicketPriority, int],
    now: datetime,
    actor_id: int | None,
    result: SlaRunResult,
) -> None:
    effective = effective_elapsed_minutes(ticket, events, now)
    target = targets.get(ticket.priority) or targets[TicketPriority.MEDIUM]
    payload = {"elapsedMinutes": effective, "targetMinutes": target}

    if effective >= target:
        if has_event(events, EventType.SLA_BREACH):
            return
        if _record_once(session, ticket, EventType.SLA_BREACH, payload, dedupe_key(EventType.SLA_BREACH), actor_id, now):
            result.breaches_sent += 1
            notify_safely(
                session,
                transport,
                SlaBreach(ticket_id=ticket.id, actor_id=actor_id, elapsed_minutes=effective, target_minutes=target),
            )
    elif effective >= target * settings.sla_warning_threshold:
        if has_event(events, EventType.SLA_WARNING):
            return
        if _record_once(session, ticket, EventType.SLA_WARNING, payload, dedupe_key(EventType.SLA_WARNING), actor_id, now):
            result.warnings_sent += 1
            notify_safely(
                session,
                transport,
                SlaWarning(ticket_id=ticket.id, actor_id=actor_id, elapsed_minutes=effective, target_minutes=target),
            )


def _auto_close(
    session: Session,
    transport: MailTransport,
    ticket: Ticket,
    resolved_at: datetime,
    resolved_days: int,
    now: datetime,
    actor_id: int | None,
    result: SlaRunResult,
) -> None:
    session.refresh(ticket, with_for_update=True)
    if ticket.status != TicketStatus.RESOLVED:
        session.rollback()
        return
    transition_status(session, ticket, TicketStatus.CLOSED, actor_id, autoClosed=True)
    key = dedupe_key(EventType.AUTO_CLOSED, int(resolved_at.timestamp()))
    if not _record_once(
        session,
        ticket,
        EventType.AUTO_CLOSED,
        {"autoClosed": True, "resolvedDays": resolved_days},
        key,
        actor_id,
        now,
    ):
        return
    result.auto_closed += 1
    logger.info("ticket %s auto-closed after %s days", ticket.ticket_number, resolved_days)
    notify_safely(
        session,
        transport,
        AutoClosed(ticket_id=ticket.id, actor_id=actor_id, after_days=settings.auto_close_days),
    )


def _check_resolved_ticket(
    session: Session,
    transport: MailTransport,
    ticket: Ticket,
    events: list[TicketEvent],
    now: datetime,
    actor_id: int | None,
    result: SlaRunResult,
) -> None:
    resolved_at = clock.as_utc(ticket.resolved_at)
    if resolved_at is None:
        return
    resolved_days = math.floor((now - resolved_at).total_seconds() / 86400)

    # a ticket due for closing gets the closing notice only
    if resolved_days >= settings.auto_close_days:
        _auto_close(session, transport, ticket, resolved_at, resolved_days, now, actor_id, result)
        return

    for day in settings.sla_reminder_days:
        if resolved_days < day:
            continue
        if has_event(events, EventType.AUTO_CLOSE_REMINDER, lambda p, d=day: p.get("day") == d):
            continue
        key = dedupe_key(EventType.AUTO_CLOSE_REMINDER, day)
        if _record_once(session, ticket, EventType.AUTO_CLOSE_REMINDER, {"day": day}, key, actor_id, now):
            result.reminders_sent += 1
            notify_safely(session, transport, AutoCloseReminder(ticket_id=ticket.id, actor_id=actor_id, day=day))


def run_sla_jobs(
    session: Session,
    transport: MailTransport,
    *,
    domain: str = "IT",
    actor_id: int | None = None,
) -> SlaRunResult:
    """One idempotent pass over open and resolved tickets of ``domain``.

    Every fire-once decision is re-derived from the event log and backed by
    the (ticket_id, dedupe_key) unique constraint, so overlapping runs never
    double-send. A failing ticket is logged and skipped.
    """
    now = clock.utcnow()
    targets = get_sla_targets(session)
    tickets = list(
        session.scalars(
            select(Ticket)
            .where(Ticket.domain == domain, Ticket.status.in_([*OPEN_STATUSES, TicketStatus.RESOLVED]))
            .order_by(Ticket.id)
        ).all()
    )
    event_map = load_event_map(session, [t.id for t in tickets], _SCANNED_EVENTS)
    session.commit()

    result = SlaRunResult(total_tickets=len(tickets))
    for ticket in tickets:
        events = event_map.get(ticket.id, [])
        try:
            if ticket.status in OPEN_STATUSES:
                _check_open_ticket(session, transport, ticket, events, targets, now, actor_id, result)
            elif ticket.status == TicketStatus.RESOLVED:
                _check_resolved_ticket(session, transport, ticket, events, now, actor_id, result)
        except Exception:
            session.rollback()
            result.errors += 1
            logger.exception("sla evaluation failed for ticket %s", ticket.id)

    logger.info("sla run (%s): %s", domain, result.as_dict())
    return result


def _worker_loop() -> None:
    while True:
        try:
            with SessionLocal() as session:
                run_sla_jobs(
                    session,
                    get_mail_transport(),
                    actor_id=settings.sla_system_actor_id,
                )
        except Exception:
            logger.exception("sla worker error")
        time.sleep(settings.sla_job_interval_seconds)


def start_sla_worker_thread() -> None:
    if not settings.sla_job_enabled:
        logger.info("SLA job disabled (SLA_JOB_ENABLED=false), worker not started")
        return
    t = threading.Thread(target=_worker_loop, name="sla-worker", daemon=True)
    t.start()
