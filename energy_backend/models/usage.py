from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped
from sqlalchemy.sql import func

from . import Base


class UsageStatistics(Base):
    """Rolling energy/cost totals for one device and one period bucket."""

    __tablename__ = "usage_statistics"
    __table_args__ = (
        UniqueConstraint("device_id", "period", "period_start", name="uq_usage_statistics_bucket"),
    )

    id: Mapped[int] = Column(Integer, primary_key=True)
    device_id: Mapped[str] = Column(
        String,
        ForeignKey("devices.device_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    period: Mapped[str] = Column(String, nullable=False)  # daily | weekly | monthly
    period_start: Mapped[datetime] = Column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = Column(DateTime(timezone=True), nullable=False)
    total_kwh: Mapped[float] = Column(Float, nullable=False, default=0.0)
    total_cost: Mapped[float] = Column(Float, nullable=False, default=0.0)
    reading_count: Mapped[int] = Column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
