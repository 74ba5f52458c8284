from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from energy_backend.dependencies import get_session

router = APIRouter()


@router.get("")
async def health_check():
    """Report basic service health.

    Returns:
        A simple status message.
    """
    return {"status": "ok"}


@router.get("/broker")
async def broker_status(request: Request):
    """Report the broker connection state."""
    connection = getattr(request.app.state, "connection", None)
    if connection is None:
        return {"status": "disabled"}
    return {
        "status": "ok" if connection.is_connected else "degraded",
        "state": connection.state.value,
        "reconnectPending": connection.reconnect_pending,
    }


@router.get("/db-check")
async def db_check(session: AsyncSession = Depends(get_session)):
    """Verify database connectivity and required tables."""
    try:
        await session.execute(text("SELECT 1"))
        for table in ("devices", "energy_readings", "alerts", "usage_statistics"):
            await session.execute(text(f"SELECT 1 FROM {table} LIMIT 1"))
        return {"status": "ok"}
    except Exception as e:
        return {"status": "error", "details": str(e)}
