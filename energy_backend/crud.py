"""Store helpers shared by the ingestion pipeline and the service facade."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from energy_backend.models import Alert, Device, DeviceStatusLog, Reading, UsageStatistics


# ---------------------------------------------------------------------------
# Device helpers


async def get_device(session: AsyncSession, device_id: str) -> Device | None:
    stmt: Select[tuple[Device]] = (
        select(Device)
        .options(selectinload(Device.settings))
        .where(Device.device_id == device_id)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_devices(session: AsyncSession, *, status: str | None = None) -> list[Device]:
    stmt: Select[tuple[Device]] = select(Device).order_by(Device.device_id.asc())
    if status is not None:
        stmt = stmt.where(Device.status == status)
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Reading helpers


async def add_reading(session: AsyncSession, **values: Any) -> Reading:
    reading = Reading(**values)
    session.add(reading)
    await session.flush()
    return reading


async def get_latest_reading(session: AsyncSession, device_id: str) -> Reading | None:
    stmt: Select[tuple[Reading]] = (
        select(Reading)
        .where(Reading.device_id == device_id)
        .order_by(Reading.reading_time.desc(), Reading.id.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_energy_high_water(session: AsyncSession, device_id: str, before_id: int) -> float | None:
    """Highest powered meter value of ``device_id`` written before reading ``before_id``.

    Only readings after the last power-loss reading count, so a meter that
    restarted from zero after losing power gets a fresh baseline.
    """

    last_outage = (
        select(func.max(Reading.id))
        .where(
            Reading.device_id == device_id,
            Reading.id < before_id,
            Reading.power_connected.is_(False),
        )
        .scalar_subquery()
    )
    stmt = select(func.max(Reading.energy)).where(
        Reading.device_id == device_id,
        Reading.id < before_id,
        Reading.power_connected.is_(True),
        Reading.id > func.coalesce(last_outage, 0),
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def list_readings(
    session: AsyncSession,
    device_id: str,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Reading]:
    """Readings of one device ordered by time, optionally bounded to ``[start, end]``."""

    stmt: Select[tuple[Reading]] = select(Reading).where(Reading.device_id == device_id)
    if start is not None:
        stmt = stmt.where(Reading.reading_time >= start)
    if end is not None:
        stmt = stmt.where(Reading.reading_time <= end)
    stmt = stmt.order_by(Reading.reading_time.asc(), Reading.id.asc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Alert helpers


async def create_alert(
    session: AsyncSession,
    *,
    device_id: str,
    type: str,
    message: str,
    category: str | None = None,
    created_at: datetime | None = None,
) -> Alert:
    alert = Alert(device_id=device_id, type=type, category=category, message=message, is_active=True)
    if created_at is not None:
        alert.created_at = created_at
    session.add(alert)
    await session.flush()
    return alert


async def get_alert(session: AsyncSession, alert_id: int) -> Alert | None:
    return await session.get(Alert, alert_id)


async def list_alerts(
    session: AsyncSession,
    device_id: str,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    active_only: bool = False,
) -> list[Alert]:
    stmt: Select[tuple[Alert]] = select(Alert).where(Alert.device_id == device_id)
    if start is not None:
        stmt = stmt.where(Alert.created_at >= start)
    if end is not None:
        stmt = stmt.where(Alert.created_at <= end)
    if active_only:
        stmt = stmt.where(Alert.is_active.is_(True))
    stmt = stmt.order_by(Alert.created_at.desc(), Alert.id.desc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Usage statistics helpers


def _insert_for(session: AsyncSession):
    if session.get_bind().dialect.name == "sqlite":
        return sqlite.insert
    return postgresql.insert


async def increment_usage(
    session: AsyncSession,
    *,
    device_id: str,
    period: str,
    period_start: datetime,
    period_end: datetime,
    kwh: float,
    cost: float,
) -> None:
    """Create the bucket or add to it in a single ``INSERT .. ON CONFLICT`` statement."""

    insert = _insert_for(session)
    table = UsageStatistics.__table__
    stmt = insert(table).values(
        device_id=device_id,
        period=period,
        period_start=period_start,
        period_end=period_end,
        total_kwh=kwh,
        total_cost=cost,
        reading_count=1,
        updated_at=func.now(),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.device_id, table.c.period, table.c.period_start],
        set_={
            "total_kwh": table.c.total_kwh + stmt.excluded.total_kwh,
            "total_cost": table.c.total_cost + stmt.excluded.total_cost,
            "reading_count": table.c.reading_count + 1,
            "updated_at": func.now(),
        },
    )
    await session.execute(stmt)


async def list_usage_statistics(
    session: AsyncSession,
    device_id: str,
    *,
    period: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[UsageStatistics]:
    stmt: Select[tuple[UsageStatistics]] = select(UsageStatistics).where(
        UsageStatistics.device_id == device_id
    )
    if period is not None:
        stmt = stmt.where(UsageStatistics.period == period)
    if start is not None:
        stmt = stmt.where(UsageStatistics.period_start >= start)
    if end is not None:
        stmt = stmt.where(UsageStatistics.period_start <= end)
    # Buckets are written with core upserts, so refresh any cached instances.
    stmt = stmt.order_by(UsageStatistics.period_start.asc()).execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Status log helpers


async def add_status_log(session: AsyncSession, **values: Any) -> DeviceStatusLog:
    entry = DeviceStatusLog(**values)
    session.add(entry)
    await session.flush()
    return entry


async def list_status_logs(
    session: AsyncSession,
    device_id: str,
    *,
    since: datetime | None = None,
) -> list[DeviceStatusLog]:
    stmt: Select[tuple[DeviceStatusLog]] = select(DeviceStatusLog).where(
        DeviceStatusLog.device_id == device_id
    )
    if since is not None:
        stmt = stmt.where(DeviceStatusLog.timestamp >= since)
    stmt = stmt.order_by(DeviceStatusLog.timestamp.asc(), DeviceStatusLog.id.asc())
    result = await session.execute(stmt)
    return list(result.scalars().all())
