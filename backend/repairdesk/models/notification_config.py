from __future__ import annotations
from typing import Optional, Dict, Any
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, JSON, DateTime, func
from repairdesk.models.base import Base

class NotificationTemplateConfig(Base):
    """Versioned snapshot of the event -> template mapping edited from the settings screen.

    Rows are never updated in place; saving inserts ``version + 1`` and the dispatcher
    always reads the highest version.
    """
    __tablename__ = 'notification_template_configs'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    version: Mapped[int] = mapped_column(Integer, unique=True, nullable=False, index=True)
    bindings: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
