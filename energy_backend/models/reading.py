from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped

from . import Base


class Reading(Base):
    """A single telemetry sample recorded for a device."""

    __tablename__ = "energy_readings"
    __table_args__ = (Index("ix_energy_readings_device_time", "device_id", "reading_time"),)

    id: Mapped[int] = Column(Integer, primary_key=True)
    device_id: Mapped[str] = Column(
        String,
        ForeignKey("devices.device_id", ondelete="CASCADE"),
        nullable=False,
    )
    reading_time: Mapped[datetime] = Column(DateTime(timezone=True), nullable=False)
    voltage: Mapped[float] = Column(Float, nullable=False, default=0.0)
    current: Mapped[float] = Column(Float, nullable=False, default=0.0)
    power: Mapped[float] = Column(Float, nullable=False, default=0.0)
    energy: Mapped[float] = Column(Float, nullable=False, default=0.0)
    frequency: Mapped[float | None] = Column(Float)
    power_factor: Mapped[float | None] = Column(Float)
    power_connected: Mapped[bool] = Column(Boolean, nullable=False, default=True)

    @property
    def apparent_power(self) -> float:
        """Apparent power in VA."""
        return (self.voltage or 0.0) * (self.current or 0.0)

    def __repr__(self):
        return (
            f"<Reading(device_id={self.device_id}, reading_time={self.reading_time}, "
            f"power={self.power}, energy={self.energy})>"
        )
