from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped
from sqlalchemy.sql import func

from . import Base


class Alert(Base):
    """Threshold breach or device-reported problem."""

    __tablename__ = "alerts"
    __table_args__ = (Index("ix_alerts_device_active", "device_id", "is_active"),)

    id: Mapped[int] = Column(Integer, primary_key=True)
    device_id: Mapped[str] = Column(
        String,
        ForeignKey("devices.device_id", ondelete="CASCADE"),
        nullable=False,
    )
    type: Mapped[str] = Column(String, nullable=False)  # "warning" | "critical"
    category: Mapped[str | None] = Column(String, index=True)
    message: Mapped[str] = Column(Text, nullable=False)
    is_active: Mapped[bool] = Column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = Column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), server_default=func.now(), nullable=False
    )
    resolved_at: Mapped[datetime | None] = Column(DateTime(timezone=True))
