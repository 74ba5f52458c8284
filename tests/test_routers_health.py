"""Tests for health check endpoints."""
import pytest
from httpx import AsyncClient

from energy_backend.services import ConnectionManager
from conftest import build_settings


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """Test basic health check endpoint."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_db_check_success(client: AsyncClient):
    """Database check passes once the tables exist."""
    response = await client.get("/health/db-check")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_broker_status_without_connection(client: AsyncClient):
    from energy_backend.main import app

    app.state.connection = None
    response = await client.get("/health/broker")
    assert response.json() == {"status": "disabled"}


@pytest.mark.asyncio
async def test_broker_status_degraded(client: AsyncClient):
    from energy_backend.main import app

    app.state.connection = ConnectionManager(config=build_settings())
    try:
        response = await client.get("/health/broker")
    finally:
        app.state.connection = None
    assert response.json() == {"status": "degraded", "state": "disconnected", "reconnectPending": False}
