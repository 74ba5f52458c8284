from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import BaseModel, ValidationError

from energy_backend.core.config import Settings, settings
from energy_backend.core.ttl_cache import TTLCache
from energy_backend.schemas.telemetry import DeviceLogMessage, PowerDataMessage, StatusMessage

from .telemetry_recorder import TelemetryRecorder

logger = logging.getLogger(__name__)


class MessageDispatcher:
    """Decodes, validates and routes one broker message to the recorder.

    Identical data payloads inside ``MESSAGE_DEDUP_WINDOW_S`` and identical
    status payloads inside ``STATUS_DEBOUNCE_S`` are dropped as redeliveries.
    """

    def __init__(self, recorder: TelemetryRecorder, config: Settings | None = None) -> None:
        self._recorder = recorder
        self._config = config or settings
        self._data_seen = TTLCache(
            self._config.message_dedup_window_s, self._config.dedup_cache_max_entries
        )
        self._status_seen = TTLCache(
            self._config.status_debounce_s, self._config.dedup_cache_max_entries
        )

    async def handle_message(self, topic: str, payload: bytes) -> None:
        data = self._decode(topic, payload)
        if data is None:
            return

        if topic == self._config.mqtt_topic_data:
            await self._handle_data(data)
        elif topic == self._config.mqtt_topic_status:
            await self._handle_status(data)
        elif topic == self._config.mqtt_topic_logs:
            await self._handle_log(data)
        elif topic.startswith(f"{self._config.mqtt_topic_control}/"):
            # Our own outbound commands echoed back by the broker.
            logger.debug("Ignoring control echo", extra={"topic": topic})
        else:
            logger.debug("Unhandled broker topic", extra={"topic": topic})

    def _decode(self, topic: str, payload: bytes) -> dict[str, Any] | None:
        try:
            decoded = payload.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning(
                "Received non-UTF8 payload",
                extra={"topic": topic, "payload_preview": payload[:100]},
            )
            return None

        try:
            data = json.loads(decoded)
        except json.JSONDecodeError as e:
            logger.warning(
                "Discarding invalid JSON payload",
                extra={"topic": topic, "error": str(e), "payload_preview": decoded[:200]},
            )
            return None

        if not isinstance(data, dict):
            logger.warning(
                "Payload is not a JSON object",
                extra={"topic": topic, "type": type(data).__name__},
            )
            return None
        return data

    async def _handle_data(self, data: dict[str, Any]) -> None:
        if "relay_status" in data and data.get("source") == "button":
            # Physical button toggles arrive on the data topic.
            await self._handle_status(
                {
                    "deviceId": data.get("deviceId") or self._config.time_sync_device_id,
                    "relay_status": data["relay_status"],
                    "source": "button",
                }
            )
            return

        message = self._validate(PowerDataMessage, data)
        if message is None:
            return
        if self._data_seen.seen(_fingerprint(data)):
            logger.debug("Duplicate telemetry dropped", extra={"device_id": message.device_id})
            return
        await self._recorder.handle_power_data(message)

    async def _handle_status(self, data: dict[str, Any]) -> None:
        message = self._validate(StatusMessage, data)
        if message is None:
            return
        if message.device_id and self._status_seen.seen(_fingerprint(data)):
            logger.debug("Duplicate status dropped", extra={"device_id": message.device_id})
            return
        await self._recorder.handle_status(message)

    async def _handle_log(self, data: dict[str, Any]) -> None:
        message = self._validate(DeviceLogMessage, data)
        if message is None:
            return
        await self._recorder.handle_log(message)

    def _validate(self, model: type[BaseModel], data: dict[str, Any]):
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            logger.warning(
                "Rejected invalid payload",
                extra={
                    "schema": model.__name__,
                    "errors": exc.errors(include_url=False, include_context=False),
                    "payload": data,
                },
            )
            return None


def _fingerprint(data: dict[str, Any]) -> str:
    return json.dumps(data, sort_keys=True, default=str)
