"""
Alembic migration environment – **async-safe**

• opens an *async* engine
• unwraps it to a regular sync Connection for Alembic
• no `metadata.create_all()` – schema is created by migrations only
"""

from logging.config import fileConfig
import asyncio
import sys
import pathlib

# ── make sure "energy_backend" is importable when Alembic is invoked directly ──
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from alembic import context  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402

from energy_backend.models import Base  # noqa: E402

# ── Alembic config -------------------------------------------------------------
config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)
target_metadata = Base.metadata


def _engine():
    """Use ``sqlalchemy.url`` when set (tests), else the application engine."""
    url = config.get_main_option("sqlalchemy.url")
    if url:
        return create_async_engine(url)
    from energy_backend.db.database import engine

    return engine


# ── helpers --------------------------------------------------------------------
def run_migrations_sync(sync_connection):
    context.configure(
        connection=sync_connection,
        target_metadata=target_metadata,
        render_as_batch=True,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online():
    engine = _engine()
    async with engine.begin() as async_conn:
        await async_conn.run_sync(run_migrations_sync)
    await engine.dispose()


# ── entry-point ----------------------------------------------------------------
if context.is_offline_mode():
    raise SystemExit("Offline migrations are not supported, run online only.")
else:
    asyncio.run(run_migrations_online())
