"""Pure analytics over readings and alerts."""
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
from hypothesis import given, strategies as st

from energy_backend.services import analytics

JAKARTA = ZoneInfo("Asia/Jakarta")
START = datetime(2026, 10, 18, 5, 0, tzinfo=UTC)  # 12:00 local


@dataclass
class FakeReading:
    reading_time: datetime
    power: float
    energy: float = 0.0
    voltage: float = 220.0
    current: float = 1.0
    frequency: float | None = 50.0
    power_factor: float | None = 0.9
    power_connected: bool = True


@dataclass
class FakeAlert:
    type: str
    category: str | None
    created_at: datetime


def hourly(powers, start=START):
    return [FakeReading(start + timedelta(hours=i), power=p) for i, p in enumerate(powers)]


def test_energy_consumed_ignores_resets_and_unpowered():
    readings = [
        FakeReading(START, 100, energy=1.0),
        FakeReading(START, 100, energy=1.5),
        FakeReading(START, 0, energy=0.0, power_connected=False),
        FakeReading(START, 100, energy=1.2),
        FakeReading(START, 100, energy=1.4),
    ]
    assert analytics.energy_consumed(readings) == pytest.approx(0.7)


def test_summarize():
    readings = hourly([100, 200, 300])
    summary = analytics.summarize(readings)
    assert summary["averagePower"] == 200
    assert summary["maximumPower"] == 300
    assert summary["minimumPower"] == 100
    assert summary["readingCount"] == 3
    assert analytics.summarize([]) == analytics.empty_summary()


def test_cost_breakdown():
    breakdown = analytics.cost_breakdown(10, "R1_900VA", tax_rate=5, admin_fee_rate=0.01)
    assert breakdown["rates"]["baseRate"] == 1352.0
    assert breakdown["costs"] == {
        "base": 13520,
        "tax": 676,
        "adminFee": 135,
        "total": 14331,
        "formatted": "Rp 14.331",
    }


def test_format_idr():
    assert analytics.format_idr(1234567.4) == "Rp 1.234.567"
    assert analytics.format_idr(0) == "Rp 0"


@pytest.mark.parametrize(
    "powers,expected",
    [([], 0.0), ([100], 0.0), ([100, 100, 100], 1.0), ([0, 0], 1.0), ([100, 200], 0.6)],
)
def test_variability_confidence(powers, expected):
    assert analytics.variability_confidence(powers) == pytest.approx(expected)


@given(st.lists(st.floats(min_value=0, max_value=10_000, allow_nan=False), max_size=50))
def test_confidence_is_bounded(powers):
    confidence = analytics.variability_confidence(powers)
    assert 0.0 <= confidence <= 1.0


def test_predict_simple_and_weighted():
    readings = hourly([100, 200, 300])

    simple = analytics.predict_consumption(readings, "simple")
    assert simple["basedOnReadings"] == 3
    assert simple["predictions"]["daily"]["averagePower"] == 200
    assert simple["predictions"]["daily"]["kwh"] == pytest.approx(4.8)
    assert simple["predictions"]["monthly"]["kwh"] == pytest.approx(144.0)

    weighted = analytics.predict_consumption(readings, "weighted")
    assert weighted["predictions"]["daily"]["averagePower"] == pytest.approx(233.33)


def test_predict_linear_extrapolates_trend():
    readings = hourly([100, 200, 300])
    linear = analytics.predict_consumption(readings, "linear")
    # Fitted line at the middle of the next 24 hours: 100 + 100 * 14
    assert linear["predictions"]["daily"]["averagePower"] == pytest.approx(1500)


def test_predict_linear_never_negative():
    linear = analytics.predict_consumption(hourly([300, 200, 100]), "linear")
    assert linear["predictions"]["monthly"]["averagePower"] == 0


def test_predict_empty_and_unknown_method():
    empty = analytics.predict_consumption([], "simple")
    assert empty["basedOnReadings"] == 0
    assert empty["confidenceLevel"] == 0
    assert empty["predictions"]["weekly"]["kwh"] == 0
    with pytest.raises(ValueError):
        analytics.predict_consumption([], "arima")


def test_patterns_use_local_time():
    readings = [FakeReading(START, 500), FakeReading(START + timedelta(days=1), 300)]

    hours = analytics.hourly_pattern(readings, JAKARTA)
    assert len(hours) == 24
    assert hours[12] == {"hour": 12, "avgPower": 400}
    assert hours[5]["avgPower"] == 0

    days = analytics.daily_pattern(readings, JAKARTA)
    # Sunday and Monday
    assert days[6]["avgPower"] == 500
    assert days[0]["avgPower"] == 300


def test_peak_analysis_recommends_shifting_load():
    readings = [FakeReading(START + timedelta(days=d), 1000) for d in range(5)]
    readings += [FakeReading(START + timedelta(days=d, hours=3), 100) for d in range(5)]

    result = analytics.peak_analysis(readings, JAKARTA)

    assert result["peakHours"][0]["hour"] == 12
    assert result["analysis"]["peakToAverageRatio"] == pytest.approx(1.82)
    assert result["recommendations"][0]["category"] == "peak_usage"
    assert analytics.peak_analysis([], JAKARTA) is None


def test_power_usage_efficiency():
    result = analytics.power_usage(hourly([900, 900]), power_limit=1000)
    assert result["efficiency"]["score"] == pytest.approx(87.5)
    assert result["efficiency"]["rating"] == "good"
    assert result["efficiency"]["potentialSavings"] == pytest.approx(100)
    assert result["utilization"] == pytest.approx(90)


def test_quality_metrics_skip_unpowered():
    readings = hourly([100, 100])
    readings.append(FakeReading(START, 0, voltage=0, power_factor=None, power_connected=False))

    voltage = analytics.voltage_quality(readings)
    assert voltage["average"] == 220
    assert voltage["stability"]["rating"] == "excellent"
    assert voltage["deviations"] == 0

    pf = analytics.power_factor_quality(readings)
    assert pf["average"] == pytest.approx(0.9)
    assert pf["trend"] == "stable"


def test_efficiency_analysis_recommendations():
    readings = [
        FakeReading(START + timedelta(hours=i), 950, voltage=v, power_factor=0.7)
        for i, v in enumerate([180, 220, 220, 260])
    ]

    result = analytics.efficiency_analysis(readings, power_limit=1000)

    categories = {r["category"] for r in result["recommendations"]}
    assert categories == {"power_usage", "power_factor", "voltage_quality"}
    assert result["analysis"]["voltage"]["deviations"] == 2
    improvement_types = {i["type"] for i in result["improvementPotential"]["improvements"]}
    assert improvement_types == {"power_optimization", "power_factor_correction"}


def test_alert_history():
    alerts = [
        FakeAlert("critical", "power", START),
        FakeAlert("warning", "power", START + timedelta(hours=1)),
        FakeAlert("warning", "voltage", START + timedelta(days=1)),
    ]

    history = analytics.alert_history(alerts, JAKARTA)

    assert history["summary"] == {"total": 3, "critical": 1, "warning": 2}
    assert history["categories"]["power"] == {"count": 2, "critical": 1, "warning": 1}
    assert history["trends"]["mostFrequentCategory"] == "power"
    assert history["trends"]["perDay"] == {"2026-10-18": 2, "2026-10-19": 1}
    assert analytics.alert_history([], JAKARTA) is None


def test_reading_view_keeps_zero_power_factor():
    view = analytics.reading_view(FakeReading(START, 0.0, frequency=0.0, power_factor=0.0))
    assert view["powerFactor"] == 0.0
    assert view["frequency"] == 0.0
    assert analytics.reading_view(FakeReading(START, 0.0, power_factor=None))["powerFactor"] is None
