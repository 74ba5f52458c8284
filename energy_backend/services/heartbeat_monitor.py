"""
Device Heartbeat Monitor

Periodically checks for devices that haven't reported recently and marks
them as disconnected.
"""
import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Callable

from sqlalchemy import select

from energy_backend.core.config import Settings, settings
from energy_backend.core.device_state import DeviceStatus
from energy_backend.core.timeutils import as_utc
from energy_backend.db.session import SessionFactory, session_scope
from energy_backend.models import Device

from . import device_registry
from .alerts import AlertService

logger = logging.getLogger(__name__)


class DeviceHeartbeatMonitor:
    """
    Monitors device contact and marks silent devices as disconnected.

    Devices publish telemetry every few seconds. If nothing arrives for
    DEVICE_OFFLINE_TIMEOUT_S seconds, the device is marked disconnected and a
    connection timeout warning is raised.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        alert_service: AlertService,
        config: Settings | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._session_factory = session_factory
        self._alerts = alert_service
        self._config = config or settings
        self._clock = clock
        self._monitor_task: asyncio.Task | None = None
        self._started = False

        self._offline_timeout = int(self._config.device_offline_timeout_s)
        self._check_interval = int(self._config.device_heartbeat_check_interval_s)

    async def start(self) -> None:
        """Start the heartbeat monitor."""
        if self._started:
            logger.warning("Device heartbeat monitor already started")
            return

        self._started = True
        logger.info(
            f"Starting device heartbeat monitor "
            f"(timeout: {self._offline_timeout}s, check interval: {self._check_interval}s)"
        )
        self._monitor_task = asyncio.create_task(self._monitor_heartbeats())

    async def stop(self) -> None:
        """Stop the heartbeat monitor."""
        if not self._started:
            return

        logger.info("Stopping device heartbeat monitor")
        self._started = False

        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None

    async def _monitor_heartbeats(self) -> None:
        while self._started:
            try:
                await asyncio.sleep(self._check_interval)
                await self.check_stale_devices()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in heartbeat monitoring loop: {e}", exc_info=True)

    async def check_stale_devices(self) -> list[str]:
        """Mark devices silent for longer than the timeout as disconnected.

        Returns the ids of the devices that changed state.
        """
        now = self._clock()
        cutoff_time = now - timedelta(seconds=self._offline_timeout)
        stale: list[tuple[str, float | None]] = []

        async with session_scope(self._session_factory) as session:
            stmt = select(Device).where(
                Device.status != DeviceStatus.DISCONNECTED.value,
                (Device.last_connection.is_(None)) | (Device.last_connection < cutoff_time),
            )
            result = await session.execute(stmt)
            for device in result.scalars().all():
                silent_for = (
                    (now - as_utc(device.last_connection)).total_seconds()
                    if device.last_connection is not None
                    else None
                )
                logger.info(
                    f"Marking device {device.device_id} as disconnected",
                    extra={"device_id": device.device_id, "silent_for_s": silent_for},
                )
                await device_registry.mark_disconnected(
                    session, device, at=now, reason="connection_timeout"
                )
                stale.append((device.device_id, silent_for))

        for device_id, silent_for in stale:
            message = "Device connection timeout: no data received"
            if silent_for is not None:
                message += f" for {silent_for / 60:.0f} minutes"
            try:
                await self._alerts.raise_alert(
                    device_id,
                    type="warning",
                    category="connection",
                    message=message,
                )
            except Exception:
                logger.exception("Failed to raise connection timeout alert", extra={"device_id": device_id})
        return [device_id for device_id, _ in stale]
