"""Device Registry: the only code that mutates ``Device`` rows.

Every function takes an open session; the caller owns the transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from energy_backend import crud
from energy_backend.core.device_state import DeviceStatus, ensure_transition
from energy_backend.errors import DeviceAccessDeniedError, DeviceNotFoundError
from energy_backend.models import Device, DeviceSettings, Reading

logger = logging.getLogger(__name__)


async def get_device(session: AsyncSession, device_id: str) -> Device:
    device = await crud.get_device(session, device_id)
    if device is None:
        raise DeviceNotFoundError(device_id)
    return device


async def get_owned_device(session: AsyncSession, device_id: str, user_id: str) -> Device:
    device = await get_device(session, device_id)
    if device.owner_id != user_id:
        raise DeviceAccessDeniedError(device_id, user_id)
    return device


async def _transition(
    session: AsyncSession,
    device: Device,
    target: DeviceStatus,
    *,
    at: datetime,
    reason: str,
    details: dict[str, Any] | None = None,
) -> bool:
    """Move ``device`` to ``target``, logging the change. No-op moves are not logged."""

    previous = device.status
    if not ensure_transition(previous, target):
        return False
    device.status = target.value
    await crud.add_status_log(
        session,
        device_id=device.device_id,
        timestamp=at,
        status=target.value,
        previous_status=previous,
        reason=reason,
        details={
            "relayState": device.relay_state,
            "powerConnected": device.power_connected,
            "previousStatus": previous,
            **(details or {}),
        },
    )
    logger.info(
        "Device status changed",
        extra={"device_id": device.device_id, "from": previous, "to": target.value, "reason": reason},
    )
    return True


async def observe_reading(session: AsyncSession, device: Device, reading: Reading) -> str:
    """Apply a stored reading to the device record. Returns the previous status."""

    previous = device.status
    device.last_connection = reading.reading_time
    device.power_connected = reading.power_connected
    device.current_power = reading.power
    device.current_energy = reading.energy
    device.last_voltage = reading.voltage
    device.last_current = reading.current
    device.last_frequency = reading.frequency
    device.last_power_factor = reading.power_factor
    # Telemetry also ends a pending configuration.
    await _transition(
        session,
        device,
        DeviceStatus.CONNECTED,
        at=reading.reading_time,
        reason="telemetry",
        details={"source": "mqtt"},
    )
    return previous


async def apply_status_update(
    session: AsyncSession,
    device: Device,
    *,
    at: datetime,
    status: DeviceStatus | None = None,
    relay_state: bool | None = None,
    power_connected: bool | None = None,
    source: str = "mqtt",
    reason: str = "status_update",
) -> str:
    """Apply a device-reported status message. Returns the previous status."""

    previous = device.status
    device.last_connection = at
    if power_connected is not None:
        device.power_connected = power_connected

    details: dict[str, Any] = {"source": source}
    if source == "button":
        details["actionType"] = "manual_control"

    relay_changed = relay_state is not None and bool(relay_state) != bool(device.relay_state)
    if relay_state is not None:
        device.relay_state = bool(relay_state)
        # A relay report proves the device is reachable.
        if status is None:
            status = DeviceStatus.CONNECTED

    changed = False
    if status is not None:
        changed = await _transition(session, device, status, at=at, reason=reason, details=details)
    if relay_changed and not changed:
        await _log_relay_switch(session, device, at=at, details=details)
    return previous


async def set_relay_state(
    session: AsyncSession, device: Device, state: bool, *, at: datetime, user_id: str | None = None
) -> None:
    if bool(device.relay_state) == state:
        return
    device.relay_state = state
    await _log_relay_switch(
        session,
        device,
        at=at,
        details={"source": "api", "userId": user_id} if user_id else {"source": "api"},
    )


async def _log_relay_switch(
    session: AsyncSession, device: Device, *, at: datetime, details: dict[str, Any]
) -> None:
    await crud.add_status_log(
        session,
        device_id=device.device_id,
        timestamp=at,
        status=device.status,
        previous_status=device.status,
        reason="relay_switch",
        details={"action": "relay_switch", "relayState": device.relay_state, **details},
    )


async def apply_config(
    session: AsyncSession,
    device: Device,
    config: dict[str, Any],
    *,
    at: datetime,
    default_service_type: str,
) -> None:
    """Store pushed configuration and move the device to ``configuring``."""

    if "power_limit" in config:
        device.power_limit = config["power_limit"]
    if "current_limit" in config:
        device.current_limit = config["current_limit"]
    if "warning_threshold" in config:
        device.warning_threshold = config["warning_threshold"]

    if device.settings is None:
        device.settings = DeviceSettings(
            device_id=device.device_id,
            service_type=default_service_type,
            power_limit=device.power_limit,
        )
    settings_row = device.settings
    if "power_limit" in config:
        settings_row.power_limit = config["power_limit"]
    if "tax_rate" in config:
        settings_row.tax_rate = config["tax_rate"]
    if "service_type" in config:
        settings_row.service_type = config["service_type"]

    await _transition(
        session, device, DeviceStatus.CONFIGURING, at=at, reason="config_update", details={"source": "api"}
    )


async def mark_disconnected(
    session: AsyncSession, device: Device, *, at: datetime, reason: str
) -> bool:
    device.power_connected = False
    return await _transition(
        session, device, DeviceStatus.DISCONNECTED, at=at, reason=reason, details={"source": "monitor"}
    )
