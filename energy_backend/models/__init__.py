from sqlalchemy.orm import declarative_base

Base = declarative_base()

from .device import Device, DeviceSettings  # noqa: E402
from .reading import Reading  # noqa: E402
from .alert import Alert  # noqa: E402
from .usage import UsageStatistics  # noqa: E402
from .status_log import DeviceStatusLog  # noqa: E402

__all__ = [
    "Base",
    "Device",
    "DeviceSettings",
    "Reading",
    "Alert",
    "UsageStatistics",
    "DeviceStatusLog",
]
