"""Threshold evaluation and alert persistence."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from energy_backend import crud
from energy_backend.core.config import Settings, settings
from energy_backend.core.timeutils import utcnow
from energy_backend.db.session import SessionFactory, session_scope
from energy_backend.errors import AlertNotFoundError
from energy_backend.models import Alert, Device, Reading

from .notifications import AlertNotifier, LoggingNotifier

logger = logging.getLogger(__name__)

# Voltage warning band, inside the 190-250 V operating range.
VOLTAGE_WARNING_MIN = 200.0
VOLTAGE_WARNING_MAX = 240.0
CRITICAL_POWER_PERCENT = 95.0
DEFAULT_WARNING_PERCENT = 80.0


@dataclass(frozen=True, slots=True)
class ThresholdSettings:
    power_limit: float
    warning_percentage: float = DEFAULT_WARNING_PERCENT

    @classmethod
    def for_device(cls, device: Device, default_power_limit: float) -> ThresholdSettings:
        """Prefer the billing settings; fall back to the device's pushed config."""
        if device.settings is not None:
            return cls(
                power_limit=device.settings.power_limit,
                warning_percentage=device.settings.warning_percentage,
            )
        return cls(power_limit=device.power_limit or default_power_limit)


@dataclass(frozen=True, slots=True)
class AlertDraft:
    type: str
    category: str
    message: str


def evaluate(reading: Reading, thresholds: ThresholdSettings) -> list[AlertDraft]:
    """Return at most one alert per category for ``reading``."""

    drafts: list[AlertDraft] = []
    if not reading.power_connected:
        return drafts

    voltage = reading.voltage or 0.0
    if voltage < VOLTAGE_WARNING_MIN or voltage > VOLTAGE_WARNING_MAX:
        drafts.append(
            AlertDraft(
                type="warning",
                category="voltage",
                message=(
                    f"Voltage {voltage:.1f}V outside normal range "
                    f"({VOLTAGE_WARNING_MIN:.0f}-{VOLTAGE_WARNING_MAX:.0f}V)"
                ),
            )
        )

    if thresholds.power_limit and thresholds.power_limit > 0:
        percentage = (reading.power or 0.0) / thresholds.power_limit * 100
        if percentage > CRITICAL_POWER_PERCENT:
            drafts.append(
                AlertDraft(
                    type="critical",
                    category="power",
                    message=(
                        f"Power usage {reading.power:.1f}W is {percentage:.1f}% "
                        f"of the {thresholds.power_limit:.0f}W limit"
                    ),
                )
            )
        elif percentage > thresholds.warning_percentage:
            drafts.append(
                AlertDraft(
                    type="warning",
                    category="power",
                    message=(
                        f"Power usage {reading.power:.1f}W is {percentage:.1f}% "
                        f"of the {thresholds.power_limit:.0f}W limit"
                    ),
                )
            )
    return drafts


class AlertService:
    """Stores alerts and hands them to the notifier."""

    def __init__(
        self,
        session_factory: SessionFactory,
        notifier: AlertNotifier | None = None,
        config: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._notifier = notifier or LoggingNotifier()
        self._config = config or settings

    async def process_reading(self, reading: Reading, thresholds: ThresholdSettings) -> list[Alert]:
        drafts = evaluate(reading, thresholds)
        if not drafts:
            return []
        return await self.raise_alerts(reading.device_id, drafts)

    async def raise_alert(
        self, device_id: str, type: str, message: str, category: str | None = None
    ) -> Alert:
        alerts = await self.raise_alerts(
            device_id, [AlertDraft(type=type, category=category or "device", message=message)]
        )
        return alerts[0]

    async def raise_alerts(self, device_id: str, drafts: list[AlertDraft]) -> list[Alert]:
        async with session_scope(self._session_factory) as session:
            alerts = [
                await crud.create_alert(
                    session,
                    device_id=device_id,
                    type=draft.type,
                    category=draft.category,
                    message=draft.message,
                )
                for draft in drafts
            ]
        for alert in alerts:
            try:
                await self._notifier.notify(alert)
            except Exception:
                logger.exception("Alert notification failed", extra={"device_id": device_id})
        return alerts

    async def resolve_alert(self, alert_id: int, resolved_at: datetime | None = None) -> Alert:
        async with session_scope(self._session_factory) as session:
            alert = await crud.get_alert(session, alert_id)
            if alert is None:
                raise AlertNotFoundError(f"Alert {alert_id} not found", alert_id=alert_id)
            if alert.is_active:
                alert.is_active = False
                alert.resolved_at = resolved_at or utcnow()
        return alert
