"""Outbound device commands: relay switching and configuration push."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from energy_backend import crud
from energy_backend.core.config import Settings, settings
from energy_backend.core.device_state import DeviceStatus, ensure_transition
from energy_backend.core.retry import retry_async
from energy_backend.core.timeutils import as_utc, utcnow
from energy_backend.db.session import SessionFactory, session_scope
from energy_backend.errors import CommandFailedError, InvalidDeviceConfigError, TransportError
from energy_backend.schemas.telemetry import DeviceConfigUpdate

from . import device_registry
from .connection_manager import ConnectionManager

logger = logging.getLogger(__name__)

RELAY_STABILITY_LIMIT = 10


class DeviceControlService:
    def __init__(
        self,
        connection: ConnectionManager,
        session_factory: SessionFactory,
        config: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._connection = connection
        self._session_factory = session_factory
        self._config = config or settings
        self._clock = clock

    async def control_relay(self, device_id: str, user_id: str, state: bool) -> dict[str, Any]:
        """Switch the relay and record the new state once the command was published.

        Raises ``DeviceNotFoundError``/``DeviceAccessDeniedError`` for bad
        callers and ``CommandFailedError`` when every attempt failed; the
        stored relay state is left untouched in that case.
        """

        async with session_scope(self._session_factory) as session:
            await device_registry.get_owned_device(session, device_id, user_id)

        await self._send_relay_command(device_id, state)
        # Give the device a moment to switch before we record it.
        await asyncio.sleep(self._config.command_ack_grace_s)

        async with session_scope(self._session_factory) as session:
            device = await device_registry.get_device(session, device_id)
            await device_registry.set_relay_state(session, device, state, at=self._clock(), user_id=user_id)
            result = {"deviceId": device.device_id, "relayState": device.relay_state, "status": device.status}

        logger.info("Relay switched", extra={"device_id": device_id, "state": state, "user_id": user_id})
        return result

    async def _send_relay_command(self, device_id: str, state: bool) -> None:
        timeout = self._config.relay_command_timeout_s
        try:
            await retry_async(
                lambda: self._connection.send_command(device_id, {"set_relay": state}, timeout=timeout),
                attempts=self._config.relay_command_attempts,
                timeout=timeout,
                delay=self._config.relay_retry_delay_s,
                retry_on=(TransportError,),
                name="relay command",
            )
        except (TransportError, asyncio.TimeoutError) as exc:
            logger.error("Relay command failed", extra={"device_id": device_id, "state": state})
            raise CommandFailedError(
                f"Failed to switch relay of {device_id} after "
                f"{self._config.relay_command_attempts} attempts",
                device_id=device_id,
            ) from exc

    async def update_device_config(
        self, device_id: str, user_id: str, config: dict[str, Any]
    ) -> dict[str, Any]:
        try:
            update = DeviceConfigUpdate.model_validate(config)
        except ValidationError as exc:
            raise InvalidDeviceConfigError(
                "Invalid device configuration",
                errors=exc.errors(include_url=False, include_context=False),
            ) from exc

        async with session_scope(self._session_factory) as session:
            device = await device_registry.get_owned_device(session, device_id, user_id)
            ensure_transition(device.status, DeviceStatus.CONFIGURING)

        await self._connection.send_command(device_id, {"update_config": update.device_payload()})

        async with session_scope(self._session_factory) as session:
            device = await device_registry.get_device(session, device_id)
            await device_registry.apply_config(
                session,
                device,
                update.model_dump(exclude_none=True),
                at=self._clock(),
                default_service_type=self._config.default_service_type,
            )
            result = {"deviceId": device.device_id, "status": device.status, "config": device.config}

        logger.info("Device configuration pushed", extra={"device_id": device_id, "user_id": user_id})
        return result

    async def monitor_relay_state(self, device_id: str) -> dict[str, Any]:
        """Relay switches during the last hour and whether the relay is stable."""

        since = self._clock() - timedelta(hours=1)
        async with session_scope(self._session_factory) as session:
            device = await device_registry.get_device(session, device_id)
            logs = await crud.list_status_logs(session, device_id, since=since)
            current_state = device.relay_state

        switches = [log for log in logs if (log.details or {}).get("action") == "relay_switch"]
        last = switches[-1] if switches else None
        return {
            "currentState": current_state,
            "lastChangeTimestamp": as_utc(last.timestamp).isoformat() if last else None,
            "changeCount": len(switches),
            "isStable": len(switches) < RELAY_STABILITY_LIMIT,
            "lastChangeBy": ((last.details or {}).get("userId") if last else None) or "system",
        }
