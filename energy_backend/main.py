from contextlib import asynccontextmanager
import logging
import sys

from fastapi import FastAPI

from energy_backend import __version__
from energy_backend.core.config import settings
from energy_backend.dependencies import get_session
from energy_backend.routers import health
from energy_backend.services import (
    AlertService,
    ConnectionManager,
    DeviceControlService,
    DeviceHeartbeatMonitor,
    EnergyService,
    MessageDispatcher,
    TelemetryRecorder,
    TimeSyncScheduler,
    UsageAggregator,
)


# Configure logging first
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("uvicorn")


def build_services(config=settings, session_factory=get_session, client_factory=None) -> dict:
    """Wire the pipeline. Nothing is started here."""

    connection = ConnectionManager(config=config, client_factory=client_factory)
    alert_service = AlertService(session_factory, config=config)
    usage_aggregator = UsageAggregator(session_factory, config=config)
    recorder = TelemetryRecorder(session_factory, alert_service, usage_aggregator, config=config)
    dispatcher = MessageDispatcher(recorder, config=config)
    connection.set_handler(dispatcher.handle_message)

    time_sync = TimeSyncScheduler(connection, session_factory, alert_service, config=config)
    recorder.set_online_callback(time_sync.on_device_online)
    heartbeat = DeviceHeartbeatMonitor(session_factory, alert_service, config=config)
    device_control = DeviceControlService(connection, session_factory, config=config)
    energy_service = EnergyService(
        session_factory, alert_service, usage_aggregator, device_control, config=config
    )
    return {
        "connection": connection,
        "alert_service": alert_service,
        "usage_aggregator": usage_aggregator,
        "recorder": recorder,
        "dispatcher": dispatcher,
        "time_sync": time_sync,
        "heartbeat": heartbeat,
        "device_control": device_control,
        "energy_service": energy_service,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = build_services()
    for name, service in services.items():
        setattr(app.state, name, service)

    # Startup
    logger.info("Starting broker connection...")
    await services["connection"].start()
    logger.info("Starting device heartbeat monitor...")
    await services["heartbeat"].start()
    logger.info("Starting time sync scheduler...")
    await services["time_sync"].start()

    yield

    # Shutdown
    logger.info("Stopping time sync scheduler...")
    await services["time_sync"].stop()
    logger.info("Stopping device heartbeat monitor...")
    await services["heartbeat"].stop()
    logger.info("Stopping broker connection...")
    await services["connection"].stop()


app = FastAPI(
    title="Energy Telemetry Backend",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(health.router, prefix="/health", tags=["Health"])
