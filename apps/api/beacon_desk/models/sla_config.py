from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import DateTime, Enum, Integer, func
from .enums import TicketPriority
from .user import Base


class SlaConfig(Base):
    __tablename__ = "sla_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    priority: Mapped[TicketPriority] = mapped_column(
        Enum(TicketPriority, native_enum=False, length=16), unique=True
    )
    target_minutes: Mapped[int] = mapped_column(Integer)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
