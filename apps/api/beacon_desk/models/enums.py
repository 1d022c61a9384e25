from enum import Enum


class TicketType(str, Enum):
    IT = "IT"
    TRAVEL = "TRAVEL"


class TicketStatus(str, Enum):
    PENDING_APPROVAL = "PENDING_APPROVAL"
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    WAITING_ON_REQUESTER = "WAITING_ON_REQUESTER"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class TicketPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class ApprovalState(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ApprovalLevel(str, Enum):
    SUPERVISOR = "supervisor"
    TRAVEL_ADMIN = "travel_admin"


class EventType(str, Enum):
    CREATED = "CREATED"
    ASSIGNED = "ASSIGNED"
    STATUS_CHANGED = "STATUS_CHANGED"
    PRIORITY_CHANGED = "PRIORITY_CHANGED"
    NOTE_ADDED = "NOTE_ADDED"
    APPROVAL_REQUESTED = "APPROVAL_REQUESTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SLA_WARNING = "SLA_WARNING"
    SLA_BREACH = "SLA_BREACH"
    AUTO_CLOSE_REMINDER = "AUTO_CLOSE_REMINDER"
    AUTO_CLOSED = "AUTO_CLOSED"


class NotificationStatus(str, Enum):
    FAILED = "FAILED"
    SENT = "SENT"


OPEN_STATUSES = (
    TicketStatus.OPEN,
    TicketStatus.IN_PROGRESS,
    TicketStatus.WAITING_ON_REQUESTER,
)

TICKET_PREFIXES = {
    TicketType.IT: "IT",
    TicketType.TRAVEL: "TR",
}
