"""Ingestion pipeline tests against an in-memory database."""
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import select

from energy_backend.models import Alert, Device, DeviceStatusLog, Reading, UsageStatistics
from energy_backend.schemas.telemetry import DeviceLogMessage, PowerDataMessage, StatusMessage
from energy_backend.services import AlertService, TelemetryRecorder, UsageAggregator
from energy_backend.services.telemetry_recorder import reading_values
from conftest import NOW


@pytest_asyncio.fixture
async def recorder(session_factory, config, clock):
    alert_service = AlertService(session_factory, config=config)
    usage = UsageAggregator(session_factory, config=config)
    return TelemetryRecorder(session_factory, alert_service, usage, config=config, clock=clock)


def power_data(**overrides) -> PowerDataMessage:
    payload = {
        "deviceId": "SN001",
        "power_connected": True,
        "voltage": 220.0,
        "current": 1.0,
        "power": 200.0,
        "energy": 10.0,
        "frequency": 50.0,
        "pf": 0.95,
    }
    payload.update(overrides)
    return PowerDataMessage.model_validate(payload)


async def rows(session, model):
    return (await session.execute(select(model))).scalars().all()


def test_zero_power_factor_and_frequency_are_kept():
    values = reading_values(power_data(pf=0.0, frequency=0.0))
    assert values["power_factor"] == 0.0
    assert values["frequency"] == 0.0

    values = reading_values(power_data(pf=None, frequency=None))
    assert values["power_factor"] is None
    assert values["frequency"] is None


@pytest.mark.asyncio
async def test_power_limit_scenario(recorder, device, test_session, clock):
    device.settings.power_limit = 500.0
    device.settings.warning_percentage = 80.0
    device.status = "disconnected"
    await test_session.commit()
    clock.now = NOW + timedelta(minutes=5)

    reading = await recorder.handle_power_data(
        power_data(voltage=245, current=2, power=490, energy=12.345)
    )

    assert reading is not None
    readings = await rows(test_session, Reading)
    assert len(readings) == 1
    assert readings[0].power == pytest.approx(490)

    alerts = await rows(test_session, Alert)
    by_category = {alert.category: alert for alert in alerts}
    assert set(by_category) == {"voltage", "power"}
    assert by_category["power"].type == "critical"
    assert by_category["voltage"].type == "warning"
    assert all(alert.is_active for alert in alerts)

    refreshed = await test_session.get(Device, "SN001")
    assert refreshed.status == "connected"
    assert refreshed.last_connection == clock.now
    assert refreshed.current_power == pytest.approx(490)


@pytest.mark.asyncio
async def test_unpowered_reading_stored_as_zeros(recorder, device, test_session):
    await recorder.handle_power_data(
        PowerDataMessage.model_validate({"deviceId": "SN001", "power_connected": False})
    )

    reading = (await rows(test_session, Reading))[0]
    assert reading.power_connected is False
    assert (reading.voltage, reading.current, reading.power, reading.energy) == (0, 0, 0, 0)
    assert reading.frequency is None
    assert await rows(test_session, Alert) == []
    assert device.power_connected is False


@pytest.mark.asyncio
async def test_unknown_device_dropped(recorder, test_session):
    assert await recorder.handle_power_data(power_data(deviceId="ghost")) is None
    assert await rows(test_session, Reading) == []


@pytest.mark.asyncio
async def test_usage_statistics_updated(recorder, device, test_session, clock):
    await recorder.handle_power_data(power_data(energy=10.0))
    clock.now = NOW + timedelta(seconds=10)
    await recorder.handle_power_data(power_data(energy=10.5))

    stats = await rows(test_session, UsageStatistics)
    assert {s.period for s in stats} == {"daily", "weekly", "monthly"}
    daily = next(s for s in stats if s.period == "daily")
    assert daily.reading_count == 2
    assert daily.total_kwh == pytest.approx(0.5)
    assert daily.total_cost == pytest.approx(0.5 * 1352.0)


@pytest.mark.asyncio
async def test_online_callback_fires_on_reconnect(recorder, device, test_session):
    callback = AsyncMock()
    recorder.set_online_callback(callback)

    await recorder.handle_power_data(power_data())
    callback.assert_not_awaited()

    device.status = "disconnected"
    await test_session.commit()
    await recorder.handle_power_data(power_data(energy=10.1))
    callback.assert_awaited_once_with("SN001")


@pytest.mark.asyncio
async def test_status_logged_only_on_change(recorder, device, test_session, clock):
    await recorder.handle_status(StatusMessage(deviceId="SN001", status="connected"))
    assert await rows(test_session, DeviceStatusLog) == []

    await recorder.handle_status(StatusMessage(deviceId="SN001", status="offline"))
    logs = await rows(test_session, DeviceStatusLog)
    assert len(logs) == 1
    assert logs[0].status == "disconnected"
    assert logs[0].previous_status == "connected"
    assert logs[0].reason == "status_update"


@pytest.mark.asyncio
async def test_invalid_status_transition_rejected(recorder, device, test_session):
    device.status = "disconnected"
    await test_session.commit()

    await recorder.handle_status(StatusMessage(deviceId="SN001", status="configuring"))

    assert device.status == "disconnected"
    assert await rows(test_session, DeviceStatusLog) == []


@pytest.mark.asyncio
async def test_button_press_logs_relay_switch(recorder, device, test_session):
    await recorder.handle_status(StatusMessage(deviceId="SN001", relay_status=True, source="button"))

    assert device.relay_state is True
    logs = await rows(test_session, DeviceStatusLog)
    assert len(logs) == 1
    assert logs[0].reason == "relay_switch"
    assert logs[0].details["action"] == "relay_switch"
    assert logs[0].details["actionType"] == "manual_control"


@pytest.mark.asyncio
async def test_relay_report_brings_device_online(recorder, device, test_session):
    device.status = "disconnected"
    await test_session.commit()
    callback = AsyncMock()
    recorder.set_online_callback(callback)

    await recorder.handle_status(StatusMessage(deviceId="SN001", relay_status=True))

    assert device.status == "connected"
    callback.assert_awaited_once_with("SN001")


@pytest.mark.asyncio
async def test_device_log_severity_creates_alert(recorder, device, test_session):
    await recorder.handle_log(DeviceLogMessage(deviceId="SN001", message="sensor timeout", warning=True))
    await recorder.handle_log(DeviceLogMessage(deviceId="SN001", message="boot ok"))

    alerts = await rows(test_session, Alert)
    assert len(alerts) == 1
    assert alerts[0].type == "warning"
    assert alerts[0].category == "device_log"
    assert alerts[0].message == "sensor timeout"
