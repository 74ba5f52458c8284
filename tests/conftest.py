"""Pytest configuration and shared fixtures for backend tests."""
import os
from datetime import UTC, datetime

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set required environment variables for testing
os.environ.setdefault("DB_HOST", "localhost")
os.environ.setdefault("DB_USER", "test_user")
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("DB_NAME", "test_db")

NOW = datetime(2026, 10, 18, 5, 0, tzinfo=UTC)  # 12:00 in Asia/Jakarta


def build_settings(**overrides):
    from energy_backend.core.config import Settings

    base = dict(
        db_host="unused",
        db_port=5432,
        db_user="unused",
        db_password="unused",
        db_name="unused",
        db_timeout=30,
        mqtt_enabled=True,
        mqtt_host="localhost",
        mqtt_port=1883,
        mqtt_use_tls=False,
        command_ack_grace_s=0.0,
        relay_retry_delay_s=0.0,
        relay_command_timeout_s=0.2,
        time_sync_verify_delay_s=0.0,
    )
    base.update(overrides)
    return Settings(**base)


class FixedClock:
    """Settable replacement for ``utcnow``."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeConnection:
    """Stands in for ConnectionManager in service tests."""

    def __init__(self, connected: bool = True, error: Exception | None = None):
        self.is_connected = connected
        self.error = error
        self.commands: list[tuple[str, dict]] = []

    async def send_command(self, device_id, command, timeout=None):
        self.commands.append((device_id, command))
        if self.error is not None:
            raise self.error


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    yield


@pytest_asyncio.fixture
async def test_engine():
    """Create in-memory test database engine."""
    from energy_backend.models import Base

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def test_session(test_engine):
    """Create test database session."""
    async_session = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with async_session() as session:
        yield session


@pytest_asyncio.fixture
async def session_factory(test_session):
    """Session factory handing out the shared test session."""
    async def _factory():
        yield test_session
    return _factory


@pytest.fixture
def config():
    return build_settings()


@pytest.fixture
def clock():
    return FixedClock()


@pytest_asyncio.fixture
async def device(test_session):
    """A connected device owned by ``user-1`` with default billing settings."""
    from energy_backend.models import Device, DeviceSettings

    device = Device(
        device_id="SN001",
        owner_id="user-1",
        name="Kitchen meter",
        status="connected",
        relay_state=False,
        last_connection=NOW,
    )
    device.settings = DeviceSettings(
        device_id="SN001",
        service_type="R1_900VA",
        power_limit=1000.0,
        warning_percentage=80.0,
        tax_rate=5.0,
    )
    test_session.add(device)
    await test_session.commit()
    return device


@pytest_asyncio.fixture
async def client(test_session):
    """Create test HTTP client with database override."""
    from energy_backend.main import app
    from energy_backend.dependencies import get_session

    async def override_get_session():
        yield test_session

    app.dependency_overrides[get_session] = override_get_session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
