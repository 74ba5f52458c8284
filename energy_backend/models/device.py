from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, relationship
from sqlalchemy.sql import func

from . import Base


class Device(Base):
    """Current state of a physical monitoring unit."""

    __tablename__ = "devices"
    __table_args__ = (Index("ix_devices_owner_status", "owner_id", "status"),)

    device_id: Mapped[str] = Column(String, primary_key=True, index=True)
    owner_id: Mapped[str] = Column(String, nullable=False, index=True)
    name: Mapped[str | None] = Column(String)
    status: Mapped[str] = Column(String, nullable=False, default="disconnected")
    relay_state: Mapped[bool] = Column(Boolean, nullable=False, default=False)
    last_connection: Mapped[datetime | None] = Column(DateTime(timezone=True))

    # Configuration pushed to the device
    power_limit: Mapped[float] = Column(Float, nullable=False, default=2200.0)
    current_limit: Mapped[float] = Column(Float, nullable=False, default=10.0)
    warning_threshold: Mapped[float] = Column(Float, nullable=False, default=90.0)

    # Last observed values
    power_connected: Mapped[bool | None] = Column(Boolean)
    current_power: Mapped[float | None] = Column(Float)
    current_energy: Mapped[float | None] = Column(Float)
    last_voltage: Mapped[float | None] = Column(Float)
    last_current: Mapped[float | None] = Column(Float)
    last_frequency: Mapped[float | None] = Column(Float)
    last_power_factor: Mapped[float | None] = Column(Float)

    created_at: Mapped[datetime] = Column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), server_default=func.now(), nullable=False
    )

    settings: Mapped[DeviceSettings | None] = relationship(
        "DeviceSettings",
        back_populates="device",
        uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def config(self) -> dict:
        return {
            "powerLimit": self.power_limit,
            "currentLimit": self.current_limit,
            "warningThreshold": self.warning_threshold,
        }


class DeviceSettings(Base):
    """Billing and threshold parameters for a device."""

    __tablename__ = "device_settings"

    device_id: Mapped[str] = Column(
        String,
        ForeignKey("devices.device_id", ondelete="CASCADE"),
        primary_key=True,
    )
    service_type: Mapped[str] = Column(String, nullable=False, default="R1_900VA")
    power_limit: Mapped[float] = Column(Float, nullable=False, default=1000.0)
    warning_percentage: Mapped[float] = Column(Float, nullable=False, default=80.0)
    tax_rate: Mapped[float] = Column(Float, nullable=False, default=5.0)

    device: Mapped[Device] = relationship("Device", back_populates="settings")
