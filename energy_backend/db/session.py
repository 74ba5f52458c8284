from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

SessionFactory = Callable[[], AsyncIterator[Any]]


@asynccontextmanager
async def session_scope(session_factory: SessionFactory) -> AsyncIterator[AsyncSession]:
    """Open a session from a ``get_session``-style generator; commit or roll back."""

    generator = session_factory()
    session = await generator.__anext__()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await generator.aclose()
