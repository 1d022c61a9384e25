from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core import clock
from ..models.enums import EventType
from ..models.event import TicketEvent


def dedupe_key(event_type: EventType, suffix: int | str | None = None) -> str:
    if suffix is None:
        return event_type.value
    return f"{event_type.value}:{suffix}"


def append_event(
    session: Session,
    ticket_id: int,
    event_type: EventType,
    actor_id: int | None,
    payload: dict[str, Any] | None = None,
    *,
    key: str | None = None,
    created_at: datetime | None = None,
) -> TicketEvent:
    """Append an immutable history row.

    Rows with ``key`` are fire-once: a second row with the same
    (ticket, key) violates ``uq_ticket_events_ticket_dedupe`` at flush.
    """
    ev = TicketEvent(
        ticket_id=ticket_id,
        type=event_type,
        created_by=actor_id,
        payload=payload or {},
        dedupe_key=key,
        created_at=created_at or clock.utcnow(),
    )
    session.add(ev)
    if key is not None:
        session.flush()
    return ev


def list_events(
    session: Session,
    ticket_id: int,
    types: Iterable[EventType] | None = None,
) -> list[TicketEvent]:
    stmt = select(TicketEvent).where(TicketEvent.ticket_id == ticket_id)
    if types is not None:
        stmt = stmt.where(TicketEvent.type.in_(list(types)))
    stmt = stmt.order_by(TicketEvent.created_at.asc(), TicketEvent.id.asc())
    return list(session.scalars(stmt).all())


def load_event_map(
    session: Session,
    ticket_ids: list[int],
    types: Iterable[EventType],
) -> dict[int, list[TicketEvent]]:
    if not ticket_ids:
        return {}
    stmt = (
        select(TicketEvent)
        .where(TicketEvent.ticket_id.in_(ticket_ids))
        .where(TicketEvent.type.in_(list(types)))
        .order_by(TicketEvent.created_at.asc(), TicketEvent.id.asc())
    )
    event_map: dict[int, list[TicketEvent]] = {}
    for ev in session.scalars(stmt).all():
        event_map.setdefault(ev.ticket_id, []).append(ev)
    return event_map


def has_event(
    events: Iterable[TicketEvent],
    event_type: EventType,
    predicate: Callable[[dict[str, Any]], bool] | None = None,
) -> bool:
    return any(
        ev.type == event_type and (predicate is None or predicate(ev.payload or {}))
        for ev in events
    )


def key_recorded(session: Session, ticket_id: int, key: str) -> bool:
    stmt = select(TicketEvent.id).where(TicketEvent.ticket_id == ticket_id, TicketEvent.dedupe_key == key)
    return session.scalars(stmt).first() is not None
