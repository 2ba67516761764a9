from __future__ import annotations
from typing import Optional
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Boolean, DateTime, Index
from repairdesk.models.base import Base

class OtpChallenge(Base):
    __tablename__ = 'otp_challenges'
    RECIPIENT_PRIMARY = 'primary'
    RECIPIENT_SECONDARY = 'secondary'
    RECIPIENT_CUSTOM = 'custom'
    RECIPIENT_TYPES = (RECIPIENT_PRIMARY, RECIPIENT_SECONDARY, RECIPIENT_CUSTOM)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    ticket_id: Mapped[int] = mapped_column(Integer, nullable=False)
    recipient_type: Mapped[str] = mapped_column(String(16), nullable=False, default=RECIPIENT_PRIMARY)
    recipient_name: Mapped[str] = mapped_column(String(120), nullable=False)
    mobile: Mapped[str] = mapped_column(String(32), nullable=False)
    # Compared as a string; leading zeros are significant.
    code: Mapped[str] = mapped_column(String(6), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consumed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    consumed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index('ix_otp_challenges_ticket_live', 'ticket_kind', 'ticket_id', 'consumed'),
    )
