from __future__ import annotations
from typing import Optional
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Text, DateTime, Index, func
from repairdesk.models.base import Base

class TicketStatusEvent(Base):
    """Append-only record of every committed status change (machine, OTP or override)."""
    __tablename__ = 'ticket_status_events'
    SOURCE_CREATED = 'created'
    SOURCE_MACHINE = 'machine'
    SOURCE_OTP = 'otp'
    SOURCE_OVERRIDE = 'admin_override'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    ticket_id: Mapped[int] = mapped_column(Integer, nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    to_status: Mapped[str] = mapped_column(String(40), nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default=SOURCE_MACHINE)
    actor_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('ix_ticket_status_events_ticket', 'ticket_kind', 'ticket_id'),
    )
