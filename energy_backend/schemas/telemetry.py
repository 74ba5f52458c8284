from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictBool, model_validator

_REQUIRED_WHEN_POWERED = ("voltage", "current", "power", "energy")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class PowerDataMessage(BaseModel):
    """Telemetry sample published on the power-data topic."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    device_id: str = Field(..., alias="deviceId", min_length=1)
    power_connected: StrictBool = Field(..., alias="power_connected")
    voltage: float | None = None
    current: float | None = None
    power: float | None = None
    energy: float | None = None
    frequency: float | None = None
    power_factor: float | None = Field(None, alias="pf")

    @model_validator(mode="before")
    @classmethod
    def _check_powered_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if data.get("power_connected") is not True:
            return data
        for name in _REQUIRED_WHEN_POWERED:
            value = data.get(name)
            if value is None:
                raise ValueError(f"missing field '{name}'")
            if not _is_number(value):
                raise ValueError(f"field '{name}' must be numeric")
            if value < 0:
                raise ValueError(f"field '{name}' must be non-negative")
        return data


class StatusMessage(BaseModel):
    """Device connectivity or relay notification published on the status topic."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    device_id: str | None = Field(None, alias="deviceId")
    status: str | None = None
    relay_status: bool | None = None
    source: str | None = None

    @property
    def is_button_press(self) -> bool:
        return self.source == "button"


class DeviceLogMessage(BaseModel):
    """Diagnostic line published on the device log topic."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    device_id: str | None = Field(None, alias="deviceId")
    message: str = ""
    error: bool = False
    warning: bool = False

    @property
    def severity(self) -> str | None:
        if self.error:
            return "critical"
        if self.warning:
            return "warning"
        return None


class DeviceConfigUpdate(BaseModel):
    """Configuration accepted by ``update_device_config``."""

    model_config = ConfigDict(populate_by_name=True)

    power_limit: float | None = Field(None, alias="powerLimit", ge=100, le=5000)
    current_limit: float | None = Field(None, alias="currentLimit", ge=1, le=20)
    warning_threshold: float | None = Field(None, alias="warningThreshold", ge=50, le=95)
    tax_rate: float | None = Field(None, alias="taxRate", ge=0, le=100)
    service_type: str | None = Field(None, alias="serviceType")

    def device_payload(self) -> dict[str, Any]:
        """Envelope body sent to the device (only device-side knobs)."""
        return self.model_dump(
            by_alias=True,
            exclude_none=True,
            include={"power_limit", "current_limit", "warning_threshold"},
        )
