"""The alembic history creates the same tables the models describe."""
import asyncio
import os

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import create_async_engine

ROOT = os.path.join(os.path.dirname(__file__), "..")


def alembic_config(database_url: str) -> Config:
    cfg = Config(os.path.join(ROOT, "alembic.ini"))
    cfg.set_main_option("script_location", os.path.join(ROOT, "alembic"))
    cfg.set_main_option("sqlalchemy.url", database_url)
    return cfg


@pytest.mark.asyncio
async def test_upgrade_and_downgrade(tmp_path):
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'migrations.db'}"
    cfg = alembic_config(database_url)

    await asyncio.to_thread(command.upgrade, cfg, "head")

    engine = create_async_engine(database_url)
    try:
        async with engine.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
            uniques = await conn.run_sync(
                lambda sync_conn: inspect(sync_conn).get_unique_constraints("usage_statistics")
            )
        assert {
            "devices",
            "device_settings",
            "energy_readings",
            "alerts",
            "usage_statistics",
            "device_status_logs",
        } <= tables
        assert any(
            u["column_names"] == ["device_id", "period", "period_start"] for u in uniques
        )

        await asyncio.to_thread(command.downgrade, cfg, "base")
        async with engine.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
        assert tables <= {"alembic_version"}
    finally:
        await engine.dispose()
