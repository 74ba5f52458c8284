"""Time-Sync Scheduler.

Publishes ``sync_time`` to the reference device at start-up, at every local
midnight and whenever a device comes back online, then checks how old the
reference device's newest reading is once the device has had time to answer.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from energy_backend import crud
from energy_backend.core.config import Settings, settings
from energy_backend.core.timeutils import as_utc, seconds_until_next_midnight, utcnow
from energy_backend.db.session import SessionFactory, session_scope
from energy_backend.errors import TransportError

from .alerts import AlertService
from .connection_manager import ConnectionManager

logger = logging.getLogger(__name__)


def build_sync_command(now: datetime, tz: ZoneInfo) -> dict[str, Any]:
    local = as_utc(now).astimezone(tz)
    return {
        "sync_time": local.strftime("%Y-%m-%d %H:%M:%S"),
        "timestamp": int(as_utc(now).timestamp() * 1000),
        "timezone": tz.key,
    }


class TimeSyncScheduler:
    def __init__(
        self,
        connection: ConnectionManager,
        session_factory: SessionFactory,
        alert_service: AlertService,
        config: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._connection = connection
        self._session_factory = session_factory
        self._alerts = alert_service
        self._config = config or settings
        self._clock = clock

        self._timer: asyncio.TimerHandle | None = None
        self._sync_scheduled = False
        self._sync_task: asyncio.Task[bool] | None = None
        self._verify_task: asyncio.Task[float | None] | None = None
        self._started = False

    @property
    def device_id(self) -> str:
        return self._config.time_sync_device_id

    async def start(self) -> None:
        if self._started:
            return
        if not self._config.time_sync_enabled:
            logger.info("Time sync disabled via configuration")
            return
        self._started = True
        await self.sync_now()
        self._schedule_next()

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._sync_scheduled = False
        for task in (self._sync_task, self._verify_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._sync_task = None
        self._verify_task = None

    def request_sync(self, _device_id: str | None = None) -> asyncio.Task[bool]:
        """Start a sync unless one is already running; returns the running task."""

        if self._sync_task is None or self._sync_task.done():
            self._sync_task = asyncio.create_task(self.sync_now())
        return self._sync_task

    async def on_device_online(self, device_id: str) -> None:
        if not self._started:
            return
        self.request_sync(device_id)

    async def sync_now(self) -> bool:
        """Publish one ``sync_time`` command and arm its verification."""

        if not self._connection.is_connected:
            logger.warning("Cannot sync time: broker not connected")
            return False
        now = self._clock()
        command = build_sync_command(now, self._config.tz)
        try:
            await self._connection.send_command(self.device_id, command)
        except TransportError as exc:
            logger.warning(
                "Time sync command failed",
                extra={"device_id": self.device_id, "error": exc.message},
            )
            return False
        logger.info("Time sync sent", extra={"device_id": self.device_id, "sync_time": command["sync_time"]})

        if self._verify_task is not None and not self._verify_task.done():
            self._verify_task.cancel()
        self._verify_task = asyncio.create_task(self._verify_later())
        return True

    def _schedule_next(self) -> None:
        if self._sync_scheduled or not self._started:
            return
        delay = seconds_until_next_midnight(self._clock(), self._config.tz)
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self._on_timer)
        self._sync_scheduled = True
        logger.info("Next time sync scheduled", extra={"delay_s": round(delay)})

    def _on_timer(self) -> None:
        self._timer = None
        self._sync_scheduled = False
        self.request_sync().add_done_callback(self._after_scheduled_run)

    def _after_scheduled_run(self, _task: asyncio.Task[bool]) -> None:
        self._schedule_next()

    async def _verify_later(self) -> float | None:
        await asyncio.sleep(self._config.time_sync_verify_delay_s)
        try:
            return await self.verify()
        except Exception:
            logger.exception("Time sync verification failed", extra={"device_id": self.device_id})
            return None

    async def verify(self) -> float | None:
        """Compare the newest reading's time with now; alert above the drift threshold.

        Returns the drift in seconds, or None when the device has no readings.
        """

        async with session_scope(self._session_factory) as session:
            latest = await crud.get_latest_reading(session, self.device_id)
        if latest is None:
            logger.info("No readings to verify time sync", extra={"device_id": self.device_id})
            return None

        drift = abs((self._clock() - as_utc(latest.reading_time)).total_seconds())
        logger.info(
            "Time sync verification",
            extra={"device_id": self.device_id, "drift_s": round(drift, 1)},
        )
        if drift > self._config.clock_drift_threshold_s:
            await self._alerts.raise_alert(
                self.device_id,
                type="warning",
                category="clock_drift",
                message=f"Device time drift detected: {drift / 60:.2f} minutes",
            )
        return drift
