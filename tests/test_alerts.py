"""Threshold evaluation and alert persistence."""
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from energy_backend.errors import AlertNotFoundError
from energy_backend.models import Device, DeviceSettings, Reading
from energy_backend.services import AlertService
from energy_backend.services.alerts import ThresholdSettings, evaluate


def make_reading(power=100.0, voltage=220.0, power_connected=True) -> Reading:
    return Reading(
        device_id="SN001",
        reading_time=datetime(2026, 10, 18, tzinfo=UTC),
        voltage=voltage,
        current=1.0,
        power=power,
        energy=1.0,
        power_connected=power_connected,
    )


THRESHOLDS = ThresholdSettings(power_limit=1000.0, warning_percentage=80.0)


@pytest.mark.parametrize(
    "power,expected",
    [
        (800.0, None),
        (800.1, "warning"),
        (950.0, "warning"),
        (950.1, "critical"),
        (1200.0, "critical"),
    ],
)
def test_power_thresholds(power, expected):
    drafts = [d for d in evaluate(make_reading(power=power), THRESHOLDS) if d.category == "power"]
    if expected is None:
        assert drafts == []
    else:
        assert len(drafts) == 1
        assert drafts[0].type == expected


@pytest.mark.parametrize("voltage,alert", [(199.9, True), (200.0, False), (240.0, False), (240.5, True)])
def test_voltage_band(voltage, alert):
    drafts = [d for d in evaluate(make_reading(voltage=voltage), THRESHOLDS) if d.category == "voltage"]
    assert bool(drafts) is alert
    if alert:
        assert drafts[0].type == "warning"


def test_unpowered_reading_never_alerts():
    assert evaluate(make_reading(power=5000.0, voltage=0.0, power_connected=False), THRESHOLDS) == []


def test_thresholds_prefer_device_settings():
    device = Device(device_id="SN001", owner_id="u", power_limit=2200.0)
    assert ThresholdSettings.for_device(device, 3000.0) == ThresholdSettings(2200.0, 80.0)

    device.settings = DeviceSettings(device_id="SN001", power_limit=500.0, warning_percentage=70.0)
    assert ThresholdSettings.for_device(device, 3000.0) == ThresholdSettings(500.0, 70.0)


@pytest.mark.asyncio
async def test_raise_alert_notifies(session_factory, device, config):
    notifier = AsyncMock()
    service = AlertService(session_factory, notifier=notifier, config=config)

    alert = await service.raise_alert("SN001", type="warning", message="Clock drift", category="clock_drift")

    assert alert.id is not None
    assert alert.is_active
    notifier.notify.assert_awaited_once_with(alert)


@pytest.mark.asyncio
async def test_notifier_failure_does_not_lose_alert(session_factory, device, config):
    notifier = AsyncMock()
    notifier.notify.side_effect = RuntimeError("smtp down")
    service = AlertService(session_factory, notifier=notifier, config=config)

    alerts = await service.process_reading(make_reading(power=990.0), THRESHOLDS)

    assert [a.type for a in alerts] == ["critical"]


@pytest.mark.asyncio
async def test_resolve_alert(session_factory, device, config):
    service = AlertService(session_factory, config=config)
    alert = await service.raise_alert("SN001", type="critical", message="Overload")
    resolved_at = datetime(2026, 10, 18, 6, 0, tzinfo=UTC)

    resolved = await service.resolve_alert(alert.id, resolved_at=resolved_at)

    assert resolved.is_active is False
    assert resolved.resolved_at == resolved_at
    assert resolved.category == "device"


@pytest.mark.asyncio
async def test_resolve_unknown_alert(session_factory, config):
    service = AlertService(session_factory, config=config)
    with pytest.raises(AlertNotFoundError):
        await service.resolve_alert(404)
