import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from beacon_desk.core.errors import AccessDenied, Conflict, NotFound
from beacon_desk.core.rbac import ADMIN_IT, ENGINEER_IT, Principal
from beacon_desk.models.enums import EventType, TicketStatus, TicketType
from beacon_desk.models.ticket import TicketAssignment
from beacon_desk.services import assignment_service
from beacon_desk.services.assignment_service import ALREADY_ASSIGNED
from beacon_desk.services.event_log import list_events


def active_rows(session, ticket_id):
    return session.scalars(
        select(TicketAssignment).where(
            TicketAssignment.ticket_id == ticket_id, TicketAssignment.unassigned_at.is_(None)
        )
    ).all()


def test_claim_takes_ownership_and_starts_work(session, transport, people, new_ticket, principal_of):
    ticket = new_ticket(people.requester)
    row = assignment_service.claim(session, transport, ticket.id, principal_of(people.engineer))

    assert row.engineer_id == people.engineer.id
    assert row.assigned_by == people.engineer.id
    session.refresh(ticket)
    assert ticket.status == TicketStatus.IN_PROGRESS

    events = list_events(session, ticket.id, [EventType.ASSIGNED, EventType.STATUS_CHANGED])
    assert [e.type for e in events] == [EventType.ASSIGNED, EventType.STATUS_CHANGED]
    assert events[0].payload == {"engineerId": people.engineer.id, "action": "claimed"}
    assert events[1].payload["oldStatus"] == "OPEN"
    assert events[1].payload["newStatus"] == "IN_PROGRESS"


def test_second_claim_is_refused(session, transport, people, new_ticket, principal_of):
    ticket = new_ticket(people.requester)
    assignment_service.claim(session, transport, ticket.id, principal_of(people.engineer))

    with pytest.raises(Conflict) as exc:
        assignment_service.claim(session, transport, ticket.id, principal_of(people.engineer2))
    assert exc.value.detail == ALREADY_ASSIGNED

    rows = active_rows(session, ticket.id)
    assert len(rows) == 1
    assert rows[0].engineer_id == people.engineer.id


def test_claim_requires_engineer_role(session, transport, people, new_ticket, principal_of):
    ticket = new_ticket(people.requester)
    with pytest.raises(AccessDenied):
        assignment_service.claim(session, transport, ticket.id, principal_of(people.outsider))
    assert active_rows(session, ticket.id) == []


def test_claim_refused_while_pending_approval(session, transport, people, new_ticket, make_user, principal_of):
    travel_engineer = make_user("tom@acme-corp.com", "ENGINEER_TRAVEL")
    ticket = new_ticket(people.requester, ticket_type=TicketType.TRAVEL)
    assert ticket.status == TicketStatus.PENDING_APPROVAL

    with pytest.raises(Conflict):
        assignment_service.claim(session, transport, ticket.id, principal_of(travel_engineer))


def test_assign_replaces_active_assignment(session, transport, people, new_ticket, principal_of):
    ticket = new_ticket(people.requester)
    admin = principal_of(people.it_admin)

    first = assignment_service.assign(session, transport, ticket.id, people.engineer.id, admin)
    second = assignment_service.assign(session, transport, ticket.id, people.engineer2.id, admin)

    session.refresh(first)
    assert first.unassigned_at is not None
    assert first.unassigned_by == people.it_admin.id
    rows = active_rows(session, ticket.id)
    assert [r.id for r in rows] == [second.id]

    assigned = list_events(session, ticket.id, [EventType.ASSIGNED])
    assert [e.payload["engineerId"] for e in assigned] == [people.engineer.id, people.engineer2.id]
    assert assigned[1].payload["previousEngineerId"] == people.engineer.id
    # only the first assignment moves the ticket out of OPEN
    status_events = list_events(session, ticket.id, [EventType.STATUS_CHANGED])
    assert len(status_events) == 1


def test_assign_notifies_engineer(session, transport, people, new_ticket, principal_of):
    ticket = new_ticket(people.requester)
    transport.clear()
    assignment_service.assign(session, transport, ticket.id, people.engineer.id, principal_of(people.it_admin))

    mails = transport.to(people.engineer.email)
    assert any("assigned to you" in m.subject for m in mails)
    assert any(ticket.ticket_number in m.subject for m in mails)


def test_assign_unknown_engineer(session, transport, people, new_ticket, principal_of):
    ticket = new_ticket(people.requester)
    with pytest.raises(NotFound) as exc:
        assignment_service.assign(session, transport, ticket.id, 9999, principal_of(people.it_admin))
    assert exc.value.detail == "Engineer not found"


def test_assign_requires_domain_admin(session, transport, people, new_ticket, principal_of):
    ticket = new_ticket(people.requester)
    with pytest.raises(AccessDenied):
        assignment_service.assign(session, transport, ticket.id, people.engineer.id, principal_of(people.travel_admin))


def test_unassign_keeps_status(session, transport, people, new_ticket, principal_of):
    ticket = new_ticket(people.requester)
    assignment_service.claim(session, transport, ticket.id, principal_of(people.engineer))

    row = assignment_service.unassign(session, ticket.id, principal_of(people.it_admin))

    assert row.unassigned_at is not None
    assert active_rows(session, ticket.id) == []
    session.refresh(ticket)
    assert ticket.status == TicketStatus.IN_PROGRESS
    last = list_events(session, ticket.id, [EventType.ASSIGNED])[-1]
    assert last.payload == {"engineerId": people.engineer.id, "action": "unassigned"}


def test_unassign_without_assignment(session, people, new_ticket, principal_of):
    ticket = new_ticket(people.requester)
    with pytest.raises(NotFound):
        assignment_service.unassign(session, ticket.id, principal_of(people.it_admin))


def test_store_rejects_two_active_rows(session, people, new_ticket):
    ticket = new_ticket(people.requester)
    session.add(TicketAssignment(ticket_id=ticket.id, engineer_id=people.engineer.id, assigned_by=people.engineer.id))
    session.commit()

    session.add(TicketAssignment(ticket_id=ticket.id, engineer_id=people.engineer2.id, assigned_by=people.engineer2.id))
    with pytest.raises(IntegrityError):
        session.commit()
    session.rollback()
    assert len(active_rows(session, ticket.id)) == 1


def test_claim_by_unknown_user_is_not_a_conflict(foreign_keys, session, transport, people, new_ticket):
    ticket = new_ticket(people.requester)
    ghost = Principal(user_id=99999, email="ghost@acme-corp.com", roles=[ENGINEER_IT])

    with pytest.raises(NotFound) as exc:
        assignment_service.claim(session, transport, ticket.id, ghost)

    assert str(exc.value) == "Engineer not found"
    assert active_rows(session, ticket.id) == []


def test_assign_write_failure_is_not_reported_as_taken(foreign_keys, session, transport, people, new_ticket):
    ticket = new_ticket(people.requester)
    # admin asserted by the token but missing from users
    admin = Principal(user_id=99998, email="ghost-admin@acme-corp.com", roles=[ADMIN_IT])

    with pytest.raises(IntegrityError):
        assignment_service.assign(session, transport, ticket.id, people.engineer.id, admin)

    assert active_rows(session, ticket.id) == []
