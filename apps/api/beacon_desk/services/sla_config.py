from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core import clock
from ..core.errors import ValidationFailed
from ..models.enums import TicketPriority
from ..models.sla_config import SlaConfig

logger = logging.getLogger(__name__)

DEFAULT_SLA_MINUTES: dict[TicketPriority, int] = {
    TicketPriority.URGENT: 240,
    TicketPriority.HIGH: 480,
    TicketPriority.MEDIUM: 1440,
    TicketPriority.LOW: 4320,
}


def get_sla_targets(session: Session) -> dict[TicketPriority, int]:
    """Defaults overridden by any stored per-priority rows."""
    targets = dict(DEFAULT_SLA_MINUTES)
    for row in session.scalars(select(SlaConfig)).all():
        if row.target_minutes and row.target_minutes > 0:
            targets[row.priority] = row.target_minutes
    return targets


def update_sla_targets(session: Session, values: dict[str, object]) -> dict[TicketPriority, int]:
    updates: dict[TicketPriority, int] = {}
    for key, raw in (values or {}).items():
        try:
            priority = TicketPriority(key)
        except ValueError:
            continue
        # whole positive minutes only; bool is an int subclass
        if isinstance(raw, bool) or not isinstance(raw, int) or raw <= 0:
            continue
        updates[priority] = raw

    if not updates:
        raise ValidationFailed("No valid SLA values provided")

    existing = {row.priority: row for row in session.scalars(select(SlaConfig)).all()}
    now = clock.utcnow()
    for priority, minutes in updates.items():
        row = existing.get(priority)
        if row:
            row.target_minutes = minutes
            row.updated_at = now
        else:
            session.add(SlaConfig(priority=priority, target_minutes=minutes, updated_at=now))
    session.commit()
    logger.info("sla targets updated: %s", {p.value: m for p, m in updates.items()})
    return get_sla_targets(session)
