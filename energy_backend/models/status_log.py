from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped

from . import Base


class DeviceStatusLog(Base):
    """Connectivity transition recorded for a device."""

    __tablename__ = "device_status_logs"
    __table_args__ = (Index("ix_device_status_logs_device_time", "device_id", "timestamp"),)

    id: Mapped[int] = Column(Integer, primary_key=True)
    device_id: Mapped[str] = Column(
        String,
        ForeignKey("devices.device_id", ondelete="CASCADE"),
        nullable=False,
    )
    timestamp: Mapped[datetime] = Column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = Column(String, nullable=False)
    previous_status: Mapped[str | None] = Column(String)
    reason: Mapped[str] = Column(String, nullable=False)
    details: Mapped[dict | None] = Column(JSON)
