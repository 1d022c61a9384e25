from __future__ import annotations

import logging
import re
import time

from sqlalchemy import desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.enums import TICKET_PREFIXES, TicketType
from ..models.ticket import Ticket

logger = logging.getLogger(__name__)

TICKET_NUMBER_PATTERN = re.compile(r"^(IT|TR)-\d{6}$")
_TRAILING_DIGITS = re.compile(r"\d+$")


def format_ticket_number(prefix: str, value: int) -> str:
    return f"{prefix}-{value:06d}"


def _fallback_number(prefix: str) -> str:
    return f"{prefix}-{str(int(time.time() * 1000))[-6:]}"


def generate_ticket_number(session: Session, ticket_type: TicketType) -> str:
    """Next number for the type's prefix: highest existing + 1, six digits.

    Duplicates under concurrent creation are rejected by the unique
    ``tickets.ticket_number`` constraint; callers retry on IntegrityError.
    """
    prefix = TICKET_PREFIXES[ticket_type]
    try:
        last = session.scalar(
            select(Ticket.ticket_number)
            .where(Ticket.ticket_number.like(f"{prefix}-%"))
            .order_by(desc(Ticket.ticket_number))
            .limit(1)
        )
    except SQLAlchemyError:
        logger.exception("ticket number lookup failed, using time-based fallback (prefix=%s)", prefix)
        session.rollback()
        return _fallback_number(prefix)

    if not last:
        return format_ticket_number(prefix, 1)

    match = _TRAILING_DIGITS.search(last)
    last_value = int(match.group(0)) if match else 0
    return format_ticket_number(prefix, last_value + 1)
