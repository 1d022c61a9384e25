from ..models.enums import TicketStatus

S = TicketStatus

# Transitions a person may request directly. Approval outcomes
# (PENDING_APPROVAL -> OPEN / CLOSED) and requester reopen are driven by
# their own workflows and bypass this table.
MANUAL_TRANSITIONS: dict[TicketStatus, set[TicketStatus]] = {
    S.PENDING_APPROVAL: set(),
    S.OPEN: {S.IN_PROGRESS, S.WAITING_ON_REQUESTER, S.RESOLVED},
    S.IN_PROGRESS: {S.OPEN, S.WAITING_ON_REQUESTER, S.RESOLVED},
    S.WAITING_ON_REQUESTER: {S.OPEN, S.IN_PROGRESS, S.RESOLVED},
    S.RESOLVED: {S.CLOSED},
    S.CLOSED: set(),
}

REOPENABLE = {S.RESOLVED, S.CLOSED}


def can_transition(old: TicketStatus, new: TicketStatus) -> bool:
    return new in MANUAL_TRANSITIONS.get(old, set())
