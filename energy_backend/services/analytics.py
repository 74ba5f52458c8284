"""On-demand analytics over a device's readings.

Every function here is pure: it works on the readings (and alerts) it is
given plus explicit settings, and never touches the database. Readings are
expected in ascending ``reading_time`` order.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any, Protocol
from zoneinfo import ZoneInfo

from energy_backend.core.timeutils import as_utc

from .tariffs import DEFAULT_SERVICE_TYPE, rate_for

VOLTAGE_MIN = 190.0
VOLTAGE_MAX = 250.0
PF_GOOD = 0.85
PF_EXCELLENT = 0.95
PF_TARGET = 0.9
IDEAL_UTILISATION = 0.8

HORIZON_HOURS = {"daily": 24, "weekly": 24 * 7, "monthly": 24 * 30}
PREDICTION_METHODS = ("simple", "weighted", "linear")


class ReadingLike(Protocol):
    reading_time: datetime
    voltage: float
    current: float
    power: float
    energy: float
    frequency: float | None
    power_factor: float | None
    power_connected: bool


class AlertLike(Protocol):
    type: str
    category: str | None
    created_at: datetime


def average(values: Iterable[float | None]) -> float:
    valid = [v for v in values if v is not None]
    return sum(valid) / len(valid) if valid else 0.0


def _powered(readings: Sequence[ReadingLike]) -> list[ReadingLike]:
    return [r for r in readings if r.power_connected]


def energy_consumed(readings: Sequence[ReadingLike]) -> float:
    """kWh consumed: the sum of positive meter increments between readings."""

    total = 0.0
    previous: float | None = None
    for reading in _powered(readings):
        if previous is not None and reading.energy > previous:
            total += reading.energy - previous
        previous = reading.energy
    return total


# ---------------------------------------------------------------------------
# Base metrics


def _stats(values: list[float]) -> dict[str, float]:
    if not values:
        return {"avg": 0.0, "min": 0.0, "max": 0.0, "total": 0.0}
    return {
        "avg": round(average(values), 3),
        "min": round(min(values), 3),
        "max": round(max(values), 3),
        "total": round(sum(values), 3),
    }


def base_metrics(readings: Sequence[ReadingLike]) -> dict[str, Any]:
    powered = _powered(readings)
    return {
        "readingCount": len(readings),
        "power": _stats([r.power for r in readings]),
        "voltage": _stats([r.voltage for r in powered]),
        "current": _stats([r.current for r in powered]),
        "energy": {**_stats([r.energy for r in powered]), "consumed": round(energy_consumed(readings), 3)},
    }


def summarize(readings: Sequence[ReadingLike]) -> dict[str, Any]:
    if not readings:
        return empty_summary()
    powers = [r.power for r in readings]
    return {
        "totalEnergy": round(energy_consumed(readings), 3),
        "averagePower": round(average(powers), 2),
        "maximumPower": round(max(powers), 2),
        "minimumPower": round(min(powers), 2),
        "readingCount": len(readings),
    }


def usage_metrics(readings: Sequence[ReadingLike]) -> dict[str, Any]:
    if not readings:
        return empty_usage_metrics()
    metrics = base_metrics(readings)
    return {
        "readingCount": metrics["readingCount"],
        "totalEnergy": metrics["energy"]["consumed"],
        "avgPower": round(metrics["power"]["avg"], 2),
        "maxPower": round(metrics["power"]["max"], 2),
        "minPower": round(metrics["power"]["min"], 2),
        "avgVoltage": round(metrics["voltage"]["avg"], 1),
        "avgCurrent": round(metrics["current"]["avg"], 2),
    }


def empty_summary() -> dict[str, Any]:
    return {"totalEnergy": 0, "averagePower": 0, "maximumPower": 0, "minimumPower": 0, "readingCount": 0}


def empty_usage_metrics() -> dict[str, Any]:
    return {
        "readingCount": 0,
        "totalEnergy": 0,
        "avgPower": 0,
        "maxPower": 0,
        "minPower": 0,
        "avgVoltage": 0,
        "avgCurrent": 0,
    }


def reading_view(reading: ReadingLike) -> dict[str, Any]:
    return {
        "timestamp": as_utc(reading.reading_time).isoformat(),
        "voltage": round(reading.voltage, 1),
        "current": round(reading.current, 2),
        "power": round(reading.power, 2),
        "energy": round(reading.energy, 3),
        "apparentPower": round(reading.voltage * reading.current, 2),
        "frequency": round(reading.frequency, 1) if reading.frequency is not None else None,
        "powerFactor": round(reading.power_factor, 2) if reading.power_factor is not None else None,
        "powerConnected": reading.power_connected,
    }


# ---------------------------------------------------------------------------
# Costs


def cost_breakdown(
    kwh: float,
    service_type: str | None = None,
    tax_rate: float = 5.0,
    admin_fee_rate: float = 0.01,
) -> dict[str, Any]:
    """Bill for ``kwh``: base (kWh x tariff) plus tax and admin fee.

    ``tax_rate`` is a percentage of the base cost; ``admin_fee_rate`` a fraction.
    """

    service_type = service_type or DEFAULT_SERVICE_TYPE
    base_rate = rate_for(service_type)
    base = kwh * base_rate
    tax = base * tax_rate / 100
    admin = base * admin_fee_rate
    total = base + tax + admin
    return {
        "usage": {"kwh": round(kwh, 3), "rateCategory": service_type},
        "rates": {"baseRate": base_rate, "taxRate": tax_rate, "adminFeeRate": admin_fee_rate * 100},
        "costs": {
            "base": round(base),
            "tax": round(tax),
            "adminFee": round(admin),
            "total": round(total),
            "formatted": format_idr(total),
        },
    }


def format_idr(amount: float) -> str:
    return "Rp " + f"{round(amount):,}".replace(",", ".")


# ---------------------------------------------------------------------------
# Predictions


def variability_confidence(powers: Sequence[float]) -> float:
    """Confidence in [0, 1] from reading-to-reading power variability.

    ``1 / (1 + mean|delta| / mean power)``: a flat series scores 1, a series
    that swings by its own mean every sample scores 0.5.
    """

    if len(powers) < 2:
        return 0.0
    deltas = [abs(b - a) for a, b in zip(powers, powers[1:])]
    mean_delta = average(deltas)
    mean_power = average(powers)
    if mean_power <= 0:
        return 1.0 if mean_delta == 0 else 0.0
    confidence = 1 / (1 + mean_delta / mean_power)
    return min(1.0, max(0.0, confidence))


def _weighted_average(powers: Sequence[float]) -> float:
    weights = range(1, len(powers) + 1)
    return sum(w * p for w, p in zip(weights, powers)) / sum(weights)


def _linear_fit(xs: Sequence[float], ys: Sequence[float]) -> tuple[float, float]:
    """Least-squares ``(intercept, slope)``."""
    mean_x = average(xs)
    mean_y = average(ys)
    var_x = sum((x - mean_x) ** 2 for x in xs)
    if var_x == 0:
        return mean_y, 0.0
    slope = sum((x - mean_x) * (y - mean_y) for x, y in zip(xs, ys)) / var_x
    return mean_y - slope * mean_x, slope


def predict_consumption(
    readings: Sequence[ReadingLike],
    method: str = "simple",
    service_type: str | None = None,
    tax_rate: float = 5.0,
    admin_fee_rate: float = 0.01,
) -> dict[str, Any]:
    """Projected energy and cost for the daily, weekly and monthly horizons."""

    if method not in PREDICTION_METHODS:
        raise ValueError(f"Unknown prediction method {method!r}")

    powers = [r.power for r in readings]
    confidence = round(variability_confidence(powers), 3)
    predictions: dict[str, Any] = {}
    if powers:
        start = as_utc(readings[0].reading_time)
        hours = [(as_utc(r.reading_time) - start).total_seconds() / 3600 for r in readings]
        intercept, slope = _linear_fit(hours, powers)

    for horizon, horizon_hours in HORIZON_HOURS.items():
        if not powers:
            avg_power = 0.0
        elif method == "simple":
            avg_power = average(powers)
        elif method == "weighted":
            avg_power = _weighted_average(powers)
        else:
            # Mean of the fitted line over the horizon equals its value at the midpoint.
            avg_power = intercept + slope * (hours[-1] + horizon_hours / 2)
        avg_power = max(0.0, avg_power)
        kwh = avg_power * horizon_hours / 1000
        predictions[horizon] = {
            "averagePower": round(avg_power, 2),
            "kwh": round(kwh, 3),
            "cost": cost_breakdown(kwh, service_type, tax_rate, admin_fee_rate)["costs"],
        }

    return {
        "method": method,
        "confidenceLevel": confidence,
        "basedOnReadings": len(powers),
        "predictions": predictions,
    }


# ---------------------------------------------------------------------------
# Patterns


def hourly_pattern(readings: Sequence[ReadingLike], tz: ZoneInfo) -> list[dict[str, Any]]:
    buckets: dict[int, list[float]] = defaultdict(list)
    for r in readings:
        buckets[as_utc(r.reading_time).astimezone(tz).hour].append(r.power)
    return [{"hour": hour, "avgPower": round(average(buckets[hour]), 2)} for hour in range(24)]


def daily_pattern(readings: Sequence[ReadingLike], tz: ZoneInfo) -> list[dict[str, Any]]:
    """Average power per weekday, Monday = 0."""
    buckets: dict[int, list[float]] = defaultdict(list)
    for r in readings:
        buckets[as_utc(r.reading_time).astimezone(tz).weekday()].append(r.power)
    return [{"day": day, "avgPower": round(average(buckets[day]), 2)} for day in range(7)]


def empty_patterns() -> dict[str, Any]:
    return {
        "hourly": [{"hour": hour, "avgPower": 0} for hour in range(24)],
        "daily": [{"day": day, "avgPower": 0} for day in range(7)],
    }


def peak_hours(readings: Sequence[ReadingLike], tz: ZoneInfo, top: int = 3) -> list[dict[str, Any]]:
    buckets: dict[int, list[float]] = defaultdict(list)
    for r in readings:
        buckets[as_utc(r.reading_time).astimezone(tz).hour].append(r.power)
    ranked = sorted(
        (
            {
                "hour": hour,
                "avgPower": round(average(powers), 2),
                "maxPower": round(max(powers), 2),
                "readingCount": len(powers),
            }
            for hour, powers in buckets.items()
        ),
        key=lambda entry: (-entry["avgPower"], entry["hour"]),
    )
    return ranked[:top]


def peak_analysis(readings: Sequence[ReadingLike], tz: ZoneInfo) -> dict[str, Any] | None:
    if not readings:
        return None
    peaks = peak_hours(readings, tz)
    overall = average(r.power for r in readings)
    ratio = peaks[0]["avgPower"] / overall if overall > 0 else 0.0
    recommendations = []
    if ratio > 1.5:
        hours = ", ".join(f"{p['hour']:02d}:00" for p in peaks)
        recommendations.append(
            {
                "category": "peak_usage",
                "priority": "medium",
                "message": f"Usage peaks around {hours}; shift flexible loads to off-peak hours",
            }
        )
    return {
        "peakHours": peaks,
        "analysis": {"overallAveragePower": round(overall, 2), "peakToAverageRatio": round(ratio, 2)},
        "recommendations": recommendations,
    }


# ---------------------------------------------------------------------------
# Quality and efficiency


def _rating(score: float, bands: tuple[float, float, float]) -> str:
    excellent, good, fair = bands
    if score >= excellent:
        return "excellent"
    if score >= good:
        return "good"
    if score >= fair:
        return "fair"
    return "poor"


def power_usage(readings: Sequence[ReadingLike], power_limit: float) -> dict[str, Any] | None:
    if not readings or power_limit <= 0:
        return None
    powers = [r.power for r in readings]
    avg_power = average(powers)
    ideal = power_limit * IDEAL_UTILISATION
    score = min(100.0, (ideal - abs(ideal - avg_power)) / ideal * 100)
    return {
        "average": round(avg_power, 2),
        "maximum": round(max(powers), 2),
        "utilization": round(avg_power / power_limit * 100, 2),
        "overLimit": sum(1 for p in powers if p > power_limit),
        "efficiency": {
            "score": round(score, 2),
            "rating": _rating(score, (90, 80, 70)),
            "potentialSavings": round(avg_power - ideal, 2) if avg_power > ideal else 0,
        },
    }


def _trend(values: Sequence[float]) -> str:
    if len(values) < 2:
        return "insufficient_data"
    change = average(b - a for a, b in zip(values, values[1:]))
    if abs(change) < 0.001:
        return "stable"
    return "improving" if change > 0 else "degrading"


def power_factor_quality(readings: Sequence[ReadingLike]) -> dict[str, Any] | None:
    factors = [r.power_factor for r in _powered(readings) if r.power_factor is not None]
    if not factors:
        return None
    return {
        "average": round(average(factors), 3),
        "minimum": round(min(factors), 3),
        "belowGood": sum(1 for pf in factors if pf < PF_GOOD),
        "excellent": sum(1 for pf in factors if pf >= PF_EXCELLENT),
        "trend": _trend(factors),
    }


def voltage_quality(readings: Sequence[ReadingLike]) -> dict[str, Any] | None:
    voltages = [r.voltage for r in _powered(readings)]
    if not voltages:
        return None
    avg = average(voltages)
    variation = average(abs(v - avg) for v in voltages)
    score = max(0.0, 100 - variation / 2)
    deviations = sum(1 for v in voltages if v < VOLTAGE_MIN or v > VOLTAGE_MAX)
    return {
        "average": round(avg, 1),
        "stability": {
            "score": round(score, 2),
            "rating": _rating(score, (95, 85, 75)),
            "variation": round(variation, 2),
        },
        "deviations": deviations,
        "deviationPercentage": round(deviations / len(voltages) * 100, 2),
    }


def improvement_potential(
    power: dict[str, Any] | None, power_factor: dict[str, Any] | None
) -> dict[str, Any]:
    savings = 0.0
    improvements: list[dict[str, Any]] = []
    if power and power["efficiency"]["potentialSavings"] > 0:
        savings += power["efficiency"]["potentialSavings"]
        improvements.append(
            {
                "type": "power_optimization",
                "savingsPotential": power["efficiency"]["potentialSavings"],
                "priority": "high",
            }
        )
    if power_factor and power_factor["average"] < PF_TARGET:
        potential = (PF_TARGET - power_factor["average"]) / PF_TARGET * 100
        improvements.append(
            {
                "type": "power_factor_correction",
                "improvementPotential": round(potential, 2),
                "priority": "high" if potential > 10 else "medium",
            }
        )
    return {
        "energySavings": round(savings, 2),
        "improvements": improvements,
        "priority": "immediate" if savings > 500 else "planned",
    }


def recommendations(
    power: dict[str, Any] | None,
    power_factor: dict[str, Any] | None,
    voltage: dict[str, Any] | None,
) -> list[dict[str, Any]]:
    result: list[dict[str, Any]] = []
    if power and power["efficiency"]["potentialSavings"] > 0:
        result.append(
            {
                "category": "power_usage",
                "priority": "high",
                "message": (
                    f"Potential power saving of {power['efficiency']['potentialSavings']:.2f}W identified"
                ),
                "actions": ["Spread load more evenly", "Reschedule heavy appliances"],
            }
        )
    if power_factor and power_factor["average"] < PF_TARGET:
        result.append(
            {
                "category": "power_factor",
                "priority": "medium",
                "message": "Average power factor is below the optimal level",
                "actions": ["Evaluate a capacitor bank", "Check the condition of connected appliances"],
            }
        )
    if voltage and voltage["deviationPercentage"] > 5:
        result.append(
            {
                "category": "voltage_quality",
                "priority": "high",
                "message": "Supply voltage stability needs improvement",
                "actions": ["Install a voltage stabiliser", "Have the wiring inspected"],
            }
        )
    return result


def efficiency_analysis(readings: Sequence[ReadingLike], power_limit: float) -> dict[str, Any]:
    power = power_usage(readings, power_limit)
    pf = power_factor_quality(readings)
    voltage = voltage_quality(readings)
    return {
        "analysis": {"power": power, "powerFactor": pf, "voltage": voltage},
        "recommendations": recommendations(power, pf, voltage),
        "improvementPotential": improvement_potential(power, pf),
    }


# ---------------------------------------------------------------------------
# Alerts


def alert_history(alerts: Sequence[AlertLike], tz: ZoneInfo) -> dict[str, Any] | None:
    if not alerts:
        return None
    categories: dict[str, dict[str, int]] = {}
    for alert in alerts:
        bucket = categories.setdefault(alert.category or "uncategorized", {"count": 0, "critical": 0, "warning": 0})
        bucket["count"] += 1
        if alert.type in ("critical", "warning"):
            bucket[alert.type] += 1
    per_day = Counter(as_utc(a.created_at).astimezone(tz).date().isoformat() for a in alerts)
    busiest = max(categories.items(), key=lambda item: item[1]["count"])[0]
    return {
        "summary": {
            "total": len(alerts),
            "critical": sum(1 for a in alerts if a.type == "critical"),
            "warning": sum(1 for a in alerts if a.type == "warning"),
        },
        "categories": categories,
        "trends": {"perDay": dict(sorted(per_day.items())), "mostFrequentCategory": busiest},
    }
