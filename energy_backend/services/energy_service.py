"""Service-object interface used by the REST layer."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from energy_backend import crud
from energy_backend.core.config import Settings, settings
from energy_backend.core.device_state import DeviceStatus
from energy_backend.core.timeutils import as_utc, utcnow
from energy_backend.db.session import SessionFactory, session_scope
from energy_backend.errors import ReadingValidationError
from energy_backend.models import Alert, Device, Reading
from energy_backend.schemas.telemetry import PowerDataMessage

from . import analytics, device_registry
from .alerts import AlertService, ThresholdSettings
from .device_control import DeviceControlService
from .telemetry_recorder import reading_values
from .usage_aggregator import UsageAggregator

logger = logging.getLogger(__name__)

MAX_CURRENT_A = 100.0


class TimeRange:
    """Closed ``[start, end]`` interval, optionally labelled with a period name."""

    def __init__(self, start: datetime, end: datetime, period: str | None = None) -> None:
        start, end = as_utc(start), as_utc(end)
        if start > end:
            raise ValueError("Start time cannot be after end time")
        self.start = start
        self.end = end
        self.period = period

    @classmethod
    def last(cls, period: str, now: datetime | None = None) -> TimeRange:
        now = now or utcnow()
        days = {"daily": 1, "weekly": 7, "monthly": 30}[period]
        return cls(now - timedelta(days=days), now, period)

    def as_dict(self) -> dict[str, Any]:
        return {"startTime": self.start.isoformat(), "endTime": self.end.isoformat(), "period": self.period}


class EnergyService:
    def __init__(
        self,
        session_factory: SessionFactory,
        alert_service: AlertService,
        usage_aggregator: UsageAggregator,
        device_control: DeviceControlService,
        config: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._alerts = alert_service
        self._usage = usage_aggregator
        self._control = device_control
        self._config = config or settings
        self._clock = clock

    # ------------------------------------------------------------------
    # ingestion

    async def record_reading(
        self, device_id: str, readings: dict[str, Any], timestamp: datetime | None = None
    ) -> Reading:
        """Store a reading submitted through the API and run the same follow-ups as MQTT ingestion."""

        payload = {"deviceId": device_id, "power_connected": True, **readings}
        if "powerFactor" in payload:
            payload.setdefault("pf", payload.pop("powerFactor"))
        try:
            message = PowerDataMessage.model_validate(payload)
        except ValueError as exc:
            raise ReadingValidationError(f"Invalid reading: {exc}", device_id=device_id) from exc
        if message.power_connected and message.current > MAX_CURRENT_A:
            raise ReadingValidationError(
                f"Current exceeds maximum of {MAX_CURRENT_A:.0f}A: {message.current}A",
                device_id=device_id,
            )
        if message.power_connected and not (
            analytics.VOLTAGE_MIN <= message.voltage <= analytics.VOLTAGE_MAX
        ):
            logger.warning(
                "Voltage outside operating range",
                extra={"device_id": device_id, "voltage": message.voltage},
            )

        reading_time = as_utc(timestamp) if timestamp is not None else self._clock()
        async with session_scope(self._session_factory) as session:
            device = await device_registry.get_device(session, device_id)
            reading = await crud.add_reading(
                session, device_id=device_id, reading_time=reading_time, **reading_values(message)
            )
            await device_registry.observe_reading(session, device, reading)
            thresholds = ThresholdSettings.for_device(device, self._config.default_power_limit_w)
            service_type = device.settings.service_type if device.settings is not None else None

        try:
            await self._alerts.process_reading(reading, thresholds)
        except Exception:
            logger.exception("Alert evaluation failed", extra={"device_id": device_id})
        try:
            await self._usage.record(reading, service_type)
        except Exception:
            logger.exception("Usage aggregation failed", extra={"device_id": device_id})
        return reading

    # ------------------------------------------------------------------
    # reads

    def _format_time(self, value: datetime | None) -> dict[str, str] | None:
        if value is None:
            return None
        value = as_utc(value)
        return {
            "iso": value.isoformat(),
            "local": value.astimezone(self._config.tz).strftime("%d/%m/%Y %H:%M:%S"),
        }

    async def get_latest_reading(self, device_id: str) -> dict[str, Any]:
        async with session_scope(self._session_factory) as session:
            device = await device_registry.get_device(session, device_id)
            latest = await crud.get_latest_reading(session, device_id)

        offline_after = timedelta(seconds=self._config.device_offline_timeout_s)
        is_offline = (
            device.last_connection is None
            or self._clock() - as_utc(device.last_connection) > offline_after
        )
        readings = None
        if latest is not None:
            readings = {
                "power": round(latest.power, 1),
                "energy": round(latest.energy, 3),
                "voltage": round(latest.voltage, 1),
                "current": round(latest.current, 3),
                "apparentPower": round(latest.apparent_power, 1),
                "powerFactor": round(latest.power_factor, 2) if latest.power_factor is not None else None,
                "frequency": round(latest.frequency, 1) if latest.frequency is not None else None,
                "powerConnected": latest.power_connected,
                "timestamp": self._format_time(latest.reading_time),
            }
        return {
            "deviceId": device_id,
            "status": {
                "relayState": device.relay_state,
                "deviceStatus": DeviceStatus.DISCONNECTED.value if is_offline else device.status,
                "lastConnection": self._format_time(device.last_connection),
            },
            "readings": readings,
        }

    async def _load(self, device_id: str, time_range: TimeRange) -> tuple[Device, list[Reading]]:
        async with session_scope(self._session_factory) as session:
            device = await device_registry.get_device(session, device_id)
            readings = await crud.list_readings(
                session, device_id, start=time_range.start, end=time_range.end
            )
        return device, readings

    def _billing(self, device: Device) -> tuple[str, float]:
        if device.settings is None:
            return self._config.default_service_type, 5.0
        return device.settings.service_type, device.settings.tax_rate

    async def get_usage_history(self, device_id: str, time_range: TimeRange) -> dict[str, Any]:
        device, readings = await self._load(device_id, time_range)
        header = {
            "device": {"id": device_id, "name": device.name or "Unnamed Device", "status": device.status},
            "timeRange": time_range.as_dict(),
        }
        if not readings:
            return {
                **header,
                "summary": analytics.empty_summary(),
                "usage": analytics.empty_usage_metrics(),
                "patterns": analytics.empty_patterns(),
                "costs": None,
                "data": [],
            }

        tz = self._config.tz
        summary = analytics.summarize(readings)
        service_type, tax_rate = self._billing(device)
        return {
            **header,
            "summary": summary,
            "usage": analytics.usage_metrics(readings),
            "patterns": {
                "hourly": analytics.hourly_pattern(readings, tz),
                "daily": analytics.daily_pattern(readings, tz),
            },
            "costs": analytics.cost_breakdown(
                summary["totalEnergy"], service_type, tax_rate, self._config.admin_fee_rate
            ),
            "data": [analytics.reading_view(r) for r in readings],
        }

    async def predict_energy_consumption(
        self, device_id: str, options: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Project consumption from recent history.

        ``options``: ``method`` (simple | weighted | linear, default simple) and
        ``days`` of history to use (default 7).
        """

        options = options or {}
        method = options.get("method", "simple")
        if method not in analytics.PREDICTION_METHODS:
            raise ValueError(f"Unknown prediction method {method!r}")
        now = self._clock()
        time_range = TimeRange(now - timedelta(days=int(options.get("days", 7))), now)
        device, readings = await self._load(device_id, time_range)
        service_type, tax_rate = self._billing(device)
        result = analytics.predict_consumption(
            readings, method, service_type, tax_rate, self._config.admin_fee_rate
        )
        return {"deviceId": device_id, "timeRange": time_range.as_dict(), **result}

    async def analyze_energy_efficiency(self, device_id: str, time_range: TimeRange) -> dict[str, Any]:
        device, readings = await self._load(device_id, time_range)
        power_limit = ThresholdSettings.for_device(device, self._config.default_power_limit_w).power_limit
        return analytics.efficiency_analysis(readings, power_limit)

    async def get_consumption_patterns(
        self, device_id: str, time_range: TimeRange
    ) -> dict[str, Any] | None:
        _, readings = await self._load(device_id, time_range)
        if not readings:
            return None
        tz = self._config.tz
        peaks = analytics.peak_analysis(readings, tz)
        return {
            "patterns": {
                "hourly": analytics.hourly_pattern(readings, tz),
                "daily": analytics.daily_pattern(readings, tz),
            },
            "peakAnalysis": peaks,
            "recommendations": peaks["recommendations"] if peaks else [],
        }

    async def analyze_alert_history(
        self, device_id: str, time_range: TimeRange
    ) -> dict[str, Any] | None:
        async with session_scope(self._session_factory) as session:
            await device_registry.get_device(session, device_id)
            alerts = await crud.list_alerts(session, device_id, start=time_range.start, end=time_range.end)
        return analytics.alert_history(alerts, self._config.tz)

    async def get_usage_statistics(
        self, device_id: str, period: str | None = None, time_range: TimeRange | None = None
    ) -> list[dict[str, Any]]:
        async with session_scope(self._session_factory) as session:
            await device_registry.get_device(session, device_id)
            rows = await crud.list_usage_statistics(
                session,
                device_id,
                period=period,
                start=time_range.start if time_range else None,
                end=time_range.end if time_range else None,
            )
        return [
            {
                "period": row.period,
                "periodStart": as_utc(row.period_start).isoformat(),
                "periodEnd": as_utc(row.period_end).isoformat(),
                "totalKwh": round(row.total_kwh, 3),
                "totalCost": round(row.total_cost, 2),
                "readingCount": row.reading_count,
            }
            for row in rows
        ]

    # ------------------------------------------------------------------
    # control

    async def check_device_ownership(self, device_id: str, user_id: str) -> Device:
        async with session_scope(self._session_factory) as session:
            return await device_registry.get_owned_device(session, device_id, user_id)

    async def control_relay(self, device_id: str, user_id: str, state: bool) -> dict[str, Any]:
        return await self._control.control_relay(device_id, user_id, state)

    async def update_device_config(
        self, device_id: str, user_id: str, config: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._control.update_device_config(device_id, user_id, config)

    async def monitor_relay_state(self, device_id: str) -> dict[str, Any]:
        return await self._control.monitor_relay_state(device_id)

    async def resolve_alert(self, alert_id: int) -> Alert:
        return await self._alerts.resolve_alert(alert_id)
