"""Alert notification boundary.

Delivery (e-mail, push) lives outside this service; the pipeline only calls
``AlertNotifier.notify`` after an alert has been stored.
"""

from __future__ import annotations

import logging
from typing import Protocol

from energy_backend.models import Alert

logger = logging.getLogger(__name__)


class AlertNotifier(Protocol):
    async def notify(self, alert: Alert) -> None: ...


class LoggingNotifier:
    """Default notifier: records the alert in the application log."""

    async def notify(self, alert: Alert) -> None:
        logger.info(
            "Alert raised",
            extra={
                "device_id": alert.device_id,
                "alert_type": alert.type,
                "category": alert.category,
                "alert_message": alert.message,
            },
        )
