from __future__ import annotations
from typing import Optional
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Text, DateTime, ForeignKey, func
from repairdesk.models.base import Base

class ServiceComplaint(Base):
    __tablename__ = 'service_complaints'
    KIND = 'service'
    CODE_PREFIX = 'TE'
    STATUS_PENDING = 'Pending'
    STATUS_ASSIGNED = 'Assigned'
    STATUS_IN_PROGRESS = 'In Progress'
    STATUS_COMPLETED = 'Completed'
    STATUS_CANCELLED = 'Cancelled'
    ALL_STATUSES = (STATUS_PENDING, STATUS_ASSIGNED, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_CANCELLED)
    PRIORITIES = ('Low', 'Normal', 'High', 'Urgent')
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    complaint_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    customer_name: Mapped[str] = mapped_column(String(120), nullable=False)
    mobile: Mapped[str] = mapped_column(String(32), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    product: Mapped[str] = mapped_column(String(120), nullable=False)
    model: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    issue_description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(40), nullable=False, default=STATUS_PENDING, index=True)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default='Normal')
    assigned_engineer_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def tracking_code(self) -> str:
        return self.complaint_number


class ServiceVisit(Base):
    __tablename__ = 'service_visits'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    complaint_id: Mapped[int] = mapped_column(ForeignKey('service_complaints.id', ondelete='CASCADE'), nullable=False, index=True)
    engineer_id: Mapped[int] = mapped_column(Integer, nullable=False)
    check_in_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    check_out_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    work_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    parts_issued: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    visit_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

# Status flow: Pending -> Assigned -> In Progress -> Completed (Cancelled as alternative terminal)
