import itertools
import re

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from beacon_desk.core.errors import Conflict
from beacon_desk.models.enums import TicketType
from beacon_desk.models.ticket import Ticket
from beacon_desk.services import numbering, ticket_service
from beacon_desk.services.numbering import TICKET_NUMBER_PATTERN, generate_ticket_number


def test_first_number_per_prefix(session, people, new_ticket):
    it = new_ticket(people.requester)
    travel = new_ticket(people.outsider, ticket_type=TicketType.TRAVEL)
    assert it.ticket_number == "IT-000001"
    assert travel.ticket_number == "TR-000001"


def test_numbers_strictly_increase_and_match_format(session, people, new_ticket):
    numbers = [new_ticket(people.requester).ticket_number for _ in range(4)]
    assert numbers == ["IT-000001", "IT-000002", "IT-000003", "IT-000004"]
    assert all(TICKET_NUMBER_PATTERN.match(n) for n in numbers)


def test_continues_from_highest_existing(session, people, new_ticket):
    first = new_ticket(people.requester)
    first.ticket_number = "IT-000041"
    session.commit()

    assert generate_ticket_number(session, TicketType.IT) == "IT-000042"
    assert generate_ticket_number(session, TicketType.TRAVEL) == "TR-000001"


def test_lookup_failure_falls_back_to_time_suffix(session, monkeypatch):
    def boom(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(session, "scalar", boom)
    number = generate_ticket_number(session, TicketType.TRAVEL)
    assert re.match(r"^TR-\d{6}$", number)


def test_create_retries_when_number_is_taken(session, people, new_ticket, monkeypatch):
    new_ticket(people.requester)
    # first candidate collides with the existing row, second is free
    candidates = itertools.chain(["IT-000001"], itertools.repeat("IT-000002"))
    monkeypatch.setattr(ticket_service, "generate_ticket_number", lambda s, t: next(candidates))

    ticket = new_ticket(people.requester, title="Second request")
    assert ticket.ticket_number == "IT-000002"
    numbers = session.scalars(select(Ticket.ticket_number).order_by(Ticket.id)).all()
    assert numbers == ["IT-000001", "IT-000002"]


def test_create_gives_up_after_repeated_collisions(session, people, new_ticket, monkeypatch):
    new_ticket(people.requester)
    monkeypatch.setattr(ticket_service, "generate_ticket_number", lambda s, t: "IT-000001")
    with pytest.raises(Conflict):
        new_ticket(people.requester, title="Doomed")
    assert session.scalar(select(Ticket).where(Ticket.title == "Doomed")) is None


def test_format_helper():
    assert numbering.format_ticket_number("IT", 123) == "IT-000123"
