from __future__ import annotations

import logging
from dataclasses import dataclass

from energy_backend import crud
from energy_backend.core.config import Settings, settings
from energy_backend.core.timeutils import PERIODS, period_bounds
from energy_backend.db.session import SessionFactory, session_scope
from energy_backend.models import Reading

from .tariffs import rate_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class UsageIncrement:
    kwh: float
    cost: float


def compute_increment(
    reading: Reading,
    baseline: float | None,
    unit_rate: float,
    mode: str = "delta",
) -> UsageIncrement:
    """Energy/cost to add to every period bucket for ``reading``.

    ``delta`` mode adds the growth of the cumulative meter above ``baseline``,
    the highest value seen so far. A reading at or below it (redelivered, out
    of order, or a reset meter) or a first reading contributes nothing.
    ``cumulative`` mode adds the raw meter value and prices the instantaneous
    power.
    """

    if mode == "cumulative":
        return UsageIncrement(kwh=reading.energy or 0.0, cost=(reading.power or 0.0) * unit_rate / 1000)

    if not reading.power_connected or baseline is None:
        return UsageIncrement(kwh=0.0, cost=0.0)
    delta = (reading.energy or 0.0) - baseline
    if delta <= 0:
        return UsageIncrement(kwh=0.0, cost=0.0)
    return UsageIncrement(kwh=delta, cost=delta * unit_rate)


class UsageAggregator:
    """Maintains daily, weekly and monthly totals per device."""

    def __init__(self, session_factory: SessionFactory, config: Settings | None = None) -> None:
        self._session_factory = session_factory
        self._config = config or settings

    async def record(self, reading: Reading, service_type: str | None = None) -> UsageIncrement:
        async with session_scope(self._session_factory) as session:
            baseline = None
            if self._config.usage_increment_mode == "delta":
                baseline = await self._baseline(session, reading)
            increment = compute_increment(
                reading,
                baseline,
                rate_for(service_type or self._config.default_service_type),
                self._config.usage_increment_mode,
            )
            for period in PERIODS:
                start, end = period_bounds(reading.reading_time, period, self._config.tz)
                await crud.increment_usage(
                    session,
                    device_id=reading.device_id,
                    period=period,
                    period_start=start,
                    period_end=end,
                    kwh=increment.kwh,
                    cost=increment.cost,
                )
        logger.debug(
            "Usage statistics updated",
            extra={"device_id": reading.device_id, "kwh": increment.kwh, "cost": increment.cost},
        )
        return increment

    async def _baseline(self, session, reading: Reading) -> float | None:
        return await crud.get_energy_high_water(session, reading.device_id, reading.id)
