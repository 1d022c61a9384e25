from datetime import datetime
from typing import Any

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import JSON, Enum, Integer, String, DateTime, ForeignKey, UniqueConstraint, func
from .enums import EventType
from .user import Base


class TicketEvent(Base):
    __tablename__ = "ticket_events"
    __table_args__ = (
        # fire-once events (SLA warning/breach, reminder per day, auto-close) carry a key
        UniqueConstraint("ticket_id", "dedupe_key", name="uq_ticket_events_ticket_dedupe"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    ticket_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tickets.id", ondelete="CASCADE"), index=True
    )
    created_by: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )

    type: Mapped[EventType] = mapped_column(Enum(EventType, native_enum=False, length=32), index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    # NULL for ordinary history rows
    dedupe_key: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
