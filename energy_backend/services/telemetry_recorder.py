"""Turns validated broker messages into store writes."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from energy_backend import crud
from energy_backend.core.config import Settings, settings
from energy_backend.core.device_state import DeviceStatus
from energy_backend.core.timeutils import utcnow
from energy_backend.db.session import SessionFactory, session_scope
from energy_backend.errors import InvalidStatusTransitionError
from energy_backend.models import Reading
from energy_backend.schemas.telemetry import DeviceLogMessage, PowerDataMessage, StatusMessage

from . import device_registry
from .alerts import AlertService, ThresholdSettings
from .usage_aggregator import UsageAggregator

logger = logging.getLogger(__name__)

OnlineCallback = Callable[[str], Awaitable[None]]


def reading_values(message: PowerDataMessage) -> dict:
    """Column values for a reading; electrical values are cleared when unpowered."""

    if not message.power_connected:
        return {
            "voltage": 0.0,
            "current": 0.0,
            "power": 0.0,
            "energy": 0.0,
            "frequency": None,
            "power_factor": None,
            "power_connected": False,
        }
    return {
        "voltage": float(message.voltage),
        "current": float(message.current),
        "power": float(message.power),
        "energy": float(message.energy),
        "frequency": float(message.frequency) if message.frequency is not None else None,
        "power_factor": float(message.power_factor) if message.power_factor is not None else None,
        "power_connected": True,
    }


class TelemetryRecorder:
    def __init__(
        self,
        session_factory: SessionFactory,
        alert_service: AlertService,
        usage_aggregator: UsageAggregator,
        config: Settings | None = None,
        on_device_online: OnlineCallback | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._alerts = alert_service
        self._usage = usage_aggregator
        self._config = config or settings
        self._on_device_online = on_device_online
        self._clock = clock

    def set_online_callback(self, callback: OnlineCallback) -> None:
        self._on_device_online = callback

    async def handle_power_data(self, message: PowerDataMessage) -> Reading | None:
        # Devices are not trusted for absolute time.
        received_at = self._clock()
        async with session_scope(self._session_factory) as session:
            device = await crud.get_device(session, message.device_id)
            if device is None:
                logger.warning("Telemetry for unknown device dropped", extra={"device_id": message.device_id})
                return None
            reading = await crud.add_reading(
                session,
                device_id=message.device_id,
                reading_time=received_at,
                **reading_values(message),
            )
            previous_status = await device_registry.observe_reading(session, device, reading)
            thresholds = ThresholdSettings.for_device(device, self._config.default_power_limit_w)
            service_type = device.settings.service_type if device.settings is not None else None

        logger.debug(
            "Energy reading recorded",
            extra={
                "device_id": reading.device_id,
                "power_connected": reading.power_connected,
                "power": reading.power,
                "energy": reading.energy,
            },
        )

        try:
            await self._alerts.process_reading(reading, thresholds)
        except Exception:
            logger.exception("Alert evaluation failed", extra={"device_id": reading.device_id})
        try:
            await self._usage.record(reading, service_type)
        except Exception:
            logger.exception("Usage aggregation failed", extra={"device_id": reading.device_id})

        if previous_status == DeviceStatus.DISCONNECTED.value:
            await self._device_came_online(reading.device_id)
        return reading

    async def handle_status(self, message: StatusMessage) -> None:
        if not message.device_id:
            logger.info("Global status update", extra={"status": message.status})
            return

        status = DeviceStatus.parse(message.status)
        if message.status is not None and status is None:
            logger.warning(
                "Unknown device status",
                extra={"device_id": message.device_id, "status": message.status},
            )
        received_at = self._clock()
        async with session_scope(self._session_factory) as session:
            device = await crud.get_device(session, message.device_id)
            if device is None:
                logger.warning("Status for unknown device dropped", extra={"device_id": message.device_id})
                return
            try:
                previous = await device_registry.apply_status_update(
                    session,
                    device,
                    at=received_at,
                    status=status,
                    relay_state=message.relay_status,
                    source=message.source or "mqtt",
                    reason="manual_control" if message.is_button_press else "status_update",
                )
            except InvalidStatusTransitionError as exc:
                logger.warning(
                    "Rejected device status transition",
                    extra={"device_id": message.device_id, "error": exc.message},
                )
                return
            current = device.status

        logger.info(
            "Device status updated",
            extra={
                "device_id": message.device_id,
                "status": current,
                "relay_state": message.relay_status,
                "source": message.source or "mqtt",
            },
        )
        if previous == DeviceStatus.DISCONNECTED.value and current == DeviceStatus.CONNECTED.value:
            await self._device_came_online(message.device_id)

    async def handle_log(self, message: DeviceLogMessage) -> None:
        if not message.device_id:
            logger.warning("Device log without deviceId dropped", extra={"log_message": message.message})
            return
        logger.info(
            "Device log",
            extra={"device_id": message.device_id, "log_message": message.message},
        )
        severity = message.severity
        if severity is None:
            return
        await self._alerts.raise_alert(
            message.device_id,
            type=severity,
            category="device_log",
            message=message.message or "Device reported an issue",
        )

    async def _device_came_online(self, device_id: str) -> None:
        if self._on_device_online is None:
            return
        logger.info("Device came online", extra={"device_id": device_id})
        try:
            await self._on_device_online(device_id)
        except Exception:
            logger.exception("Online hook failed", extra={"device_id": device_id})
