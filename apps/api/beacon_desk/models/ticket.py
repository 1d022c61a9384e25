from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Enum, Index, String, Text, Integer, DateTime, ForeignKey, func, text
from .enums import ApprovalLevel, ApprovalState, TicketPriority, TicketStatus, TicketType
from .user import Base


class Ticket(Base):
    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(primary_key=True)
    # IT-000123 / TR-000123. Unique so concurrent numbering collides loudly.
    ticket_number: Mapped[str] = mapped_column(String(16), unique=True, index=True)
    type: Mapped[TicketType] = mapped_column(Enum(TicketType, native_enum=False, length=16))
    domain: Mapped[str] = mapped_column(String(16), index=True)

    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    subcategory: Mapped[str | None] = mapped_column(String(100), nullable=True)
    impact: Mapped[str | None] = mapped_column(String(64), nullable=True)

    status: Mapped[TicketStatus] = mapped_column(
        Enum(TicketStatus, native_enum=False, length=32), default=TicketStatus.OPEN, index=True
    )
    priority: Mapped[TicketPriority] = mapped_column(
        Enum(TicketPriority, native_enum=False, length=16), default=TicketPriority.MEDIUM
    )

    requester_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), index=True)

    project_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    project_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class TicketAssignment(Base):
    __tablename__ = "ticket_assignments"
    __table_args__ = (
        # at most one active (not unassigned) row per ticket
        Index(
            "uq_ticket_assignments_active",
            "ticket_id",
            unique=True,
            postgresql_where=text("unassigned_at IS NULL"),
            sqlite_where=text("unassigned_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    ticket_id: Mapped[int] = mapped_column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), index=True)
    engineer_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"))
    assigned_by: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"))
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    unassigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    unassigned_by: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)


class TicketApproval(Base):
    __tablename__ = "ticket_approvals"

    id: Mapped[int] = mapped_column(primary_key=True)
    ticket_id: Mapped[int] = mapped_column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), index=True)
    level: Mapped[ApprovalLevel] = mapped_column(Enum(ApprovalLevel, native_enum=False, length=32))
    approver_email: Mapped[str] = mapped_column(String(255), index=True)
    approver_user_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    state: Mapped[ApprovalState] = mapped_column(
        Enum(ApprovalState, native_enum=False, length=16), default=ApprovalState.PENDING, index=True
    )
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
