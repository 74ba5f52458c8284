"""Service layer: broker connection, ingestion pipeline, schedulers and analytics."""

from .alerts import AlertService
from .connection_manager import ConnectionManager, ConnectionState
from .device_control import DeviceControlService
from .dispatcher import MessageDispatcher
from .energy_service import EnergyService, TimeRange
from .heartbeat_monitor import DeviceHeartbeatMonitor
from .notifications import AlertNotifier, LoggingNotifier
from .telemetry_recorder import TelemetryRecorder
from .time_sync import TimeSyncScheduler
from .usage_aggregator import UsageAggregator

__all__ = [
    "AlertNotifier",
    "AlertService",
    "ConnectionManager",
    "ConnectionState",
    "DeviceControlService",
    "DeviceHeartbeatMonitor",
    "EnergyService",
    "LoggingNotifier",
    "MessageDispatcher",
    "TelemetryRecorder",
    "TimeRange",
    "TimeSyncScheduler",
    "UsageAggregator",
]
