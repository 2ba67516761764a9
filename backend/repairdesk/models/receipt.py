from __future__ import annotations
from typing import Optional
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Text, Boolean, DateTime, func
from repairdesk.models.base import Base

class Receipt(Base):
    __tablename__ = 'receipts'
    KIND = 'receipt'
    CODE_PREFIX = 'TD'
    # Status constants
    STATUS_PENDING = 'Pending'
    STATUS_IN_PROCESS = 'In Process'
    STATUS_PRODUCT_ORDERED = 'Product Ordered'
    STATUS_READY = 'Ready to Deliver'
    STATUS_DELIVERED = 'Delivered'
    STATUS_NOT_REPAIRED = 'Not Repaired - Return As It Is'
    ALL_STATUSES = (STATUS_PENDING, STATUS_IN_PROCESS, STATUS_PRODUCT_ORDERED, STATUS_READY, STATUS_DELIVERED, STATUS_NOT_REPAIRED)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    receipt_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    customer_name: Mapped[str] = mapped_column(String(120), nullable=False)
    mobile: Mapped[str] = mapped_column(String(32), nullable=False)
    is_company_item: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    company_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    company_mobile: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    product: Mapped[str] = mapped_column(String(120), nullable=False)
    model: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    problem_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    estimated_amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(40), nullable=False, default=STATUS_PENDING, index=True)
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default='Pending')
    delivery_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    delivered_to: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def tracking_code(self) -> str:
        return self.receipt_number

# Status flow: Pending -> In Process -> [Product Ordered] -> Ready to Deliver -> Delivered (OTP gated)
# Not Repaired - Return As It Is is reachable from any pre-delivery status and has no exits.
