"""Single long-lived broker connection.

Owns the paho client, re-subscribes on every (re)connect, funnels inbound
messages through an asyncio queue to one handler and publishes outbound
commands with a bounded acknowledgement wait.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import tempfile
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import paho.mqtt.client as mqtt
from paho.mqtt.client import MQTTMessage

from energy_backend.core.config import Settings, settings
from energy_backend.errors import (
    BrokerUnavailableError,
    CommandTimeoutError,
    ConnectionManagerError,
    PublishError,
)

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes], Awaitable[None]]
ClientFactory = Callable[[], mqtt.Client]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(slots=True)
class _QueuedMessage:
    topic: str
    payload: bytes


class ConnectionManager:
    """Background broker connection with fixed-delay reconnect."""

    def __init__(
        self,
        config: Settings | None = None,
        handler: MessageHandler | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._config = config or settings
        self._handler = handler
        self._client_factory = client_factory or self._default_client_factory

        self._state = ConnectionState.DISCONNECTED
        self._client: mqtt.Client | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[_QueuedMessage] | None = None
        self._worker: asyncio.Task[None] | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._connack: asyncio.Future[None] | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._started = False
        self._stopping = False

    # ------------------------------------------------------------------
    # public surface

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def set_handler(self, handler: MessageHandler) -> None:
        self._handler = handler

    async def start(self) -> None:
        if self._started:
            return
        if not self._config.mqtt_enabled:
            logger.info("Broker connection disabled via configuration")
            return
        if not self._config.mqtt_host:
            raise ConnectionManagerError("MQTT_HOST must be provided when MQTT_ENABLED is true")
        if not self._config.mqtt_topics:
            raise ConnectionManagerError("At least one MQTT topic must be configured")

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._process_queue())
        self._started = True
        self._stopping = False
        logger.info(
            "Starting broker connection",
            extra={"client_id": self._config.mqtt_client_id, "host": self._config.mqtt_host},
        )
        try:
            await self.connect()
        except BrokerUnavailableError as exc:
            logger.warning("Initial broker connect failed", extra={"error": str(exc)})
            self.schedule_reconnect()

    async def stop(self) -> None:
        if not self._started:
            return
        self._stopping = True
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        for task in (self._reconnect_task, self._connect_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError, BrokerUnavailableError):
                    await task
        self._reconnect_task = None
        self._connect_task = None
        await self._teardown_client()
        if self._worker:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
        self._worker = None
        self._queue = None
        self._state = ConnectionState.DISCONNECTED
        self._started = False
        logger.info("Broker connection stopped")

    async def connect(self) -> None:
        """Connect, or join the connect attempt already in flight."""

        if self.is_connected:
            return
        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.create_task(self._do_connect())
        await asyncio.shield(self._connect_task)

    async def publish(
        self,
        topic: str,
        payload: dict[str, Any] | str | bytes,
        qos: int | None = None,
        timeout: float | None = None,
    ) -> None:
        """Publish and wait for the broker acknowledgement.

        Raises ``BrokerUnavailableError`` without a connection, ``PublishError``
        when the client rejects the message and ``CommandTimeoutError`` when no
        acknowledgement arrives within ``timeout`` seconds.
        """

        client = self._client
        if not self.is_connected or client is None:
            raise BrokerUnavailableError("Broker connection is not available", topic=topic)

        if isinstance(payload, dict):
            payload = json.dumps(payload)
        qos = self._config.mqtt_qos if qos is None else qos
        timeout = self._config.command_timeout_s if timeout is None else timeout

        try:
            info = client.publish(topic, payload, qos=qos)
        except (OSError, ValueError, RuntimeError) as exc:
            self._handle_connection_lost(f"publish failed: {exc}")
            raise PublishError(f"Publish to {topic} failed: {exc}", topic=topic) from exc

        if info.rc == mqtt.MQTT_ERR_NO_CONN:
            self._handle_connection_lost("publish without connection")
            raise BrokerUnavailableError("Broker connection lost", topic=topic)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(
                f"Publish to {topic} rejected: {mqtt.error_string(info.rc)}",
                topic=topic,
                rc=info.rc,
            )

        try:
            await asyncio.to_thread(info.wait_for_publish, timeout)
        except RuntimeError as exc:
            self._handle_connection_lost(f"publish aborted: {exc}")
            raise PublishError(f"Publish to {topic} aborted: {exc}", topic=topic) from exc
        if not info.is_published():
            raise CommandTimeoutError(
                f"No broker acknowledgement for {topic} within {timeout}s",
                topic=topic,
                timeout=timeout,
            )
        logger.debug("Published message", extra={"topic": topic, "qos": qos})

    async def send_command(
        self, device_id: str, command: dict[str, Any], timeout: float | None = None
    ) -> None:
        await self.publish(self._config.control_topic(device_id), command, timeout=timeout)

    # ------------------------------------------------------------------
    # connection lifecycle

    def _default_client_factory(self) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self._config.mqtt_client_id or "",
            protocol=mqtt.MQTTv311,
        )
        client.enable_logger(logger=logger)
        if self._config.mqtt_username and self._config.mqtt_password:
            client.username_pw_set(self._config.mqtt_username, self._config.mqtt_password)
        if self._config.mqtt_use_tls:
            client.tls_set(ca_certs=self._setup_ca_cert(self._config.mqtt_ca_cert))
        return client

    def _setup_ca_cert(self, ca_config: str | None) -> str | None:
        """Return a CA file path, writing ``CA_CERT_PEM`` content to a temp file when set."""
        pem_content = os.getenv("CA_CERT_PEM")
        if pem_content:
            temp_fd, temp_path = tempfile.mkstemp(suffix="_ca_cert.pem")
            with os.fdopen(temp_fd, "w") as temp_file:
                temp_file.write(pem_content)
            logger.info("Created temporary CA certificate file", extra={"path": temp_path})
            return temp_path
        return ca_config or None

    async def _do_connect(self) -> None:
        assert self._loop is not None
        self._state = ConnectionState.CONNECTING
        await self._teardown_client()

        client = self._client_factory()
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_connect_fail = self._on_connect_fail
        client.on_message = self._on_message
        self._client = client
        self._connack = self._loop.create_future()

        try:
            await asyncio.to_thread(
                client.connect,
                self._config.mqtt_host,
                self._config.mqtt_port,
                self._config.mqtt_keepalive,
            )
            client.loop_start()
            await asyncio.wait_for(self._connack, self._config.mqtt_connect_timeout_s)
        except (OSError, asyncio.TimeoutError) as exc:
            # ConnectionError (refused CONNACK) is an OSError subclass.
            self._state = ConnectionState.DISCONNECTED
            await self._teardown_client()
            raise BrokerUnavailableError(f"Failed to connect to broker: {exc!r}") from exc
        finally:
            self._connack = None

        self._state = ConnectionState.CONNECTED
        logger.info(
            "Connected to broker",
            extra={"host": self._config.mqtt_host, "topics": self._config.mqtt_topics},
        )

    async def _teardown_client(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        client.on_connect = None
        client.on_disconnect = None
        client.on_message = None
        try:
            client.disconnect()
            await asyncio.to_thread(client.loop_stop)
        except Exception:  # pragma: no cover - paho teardown errors
            logger.exception("Error stopping broker client")

    def schedule_reconnect(self) -> None:
        """Arm the reconnect timer unless one is pending or a connect is in flight."""

        if self._stopping or self._loop is None:
            return
        if self._reconnect_handle is not None:
            return
        if self._connect_task is not None and not self._connect_task.done():
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        delay = self._config.mqtt_reconnect_delay_s
        self._reconnect_handle = self._loop.call_later(delay, self._fire_reconnect)
        logger.info("Broker reconnect scheduled", extra={"delay_s": delay})

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        if self._stopping:
            return
        self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self) -> None:
        try:
            await self.connect()
        except BrokerUnavailableError as exc:
            logger.warning("Broker reconnect failed", extra={"error": str(exc)})
            self._reconnect_task = None
            self.schedule_reconnect()

    def _handle_connection_lost(self, reason: str) -> None:
        """Clear the connected flag and arm a reconnect. Runs on the event loop."""

        was_connected = self.is_connected
        if self._state is not ConnectionState.CONNECTING:
            self._state = ConnectionState.DISCONNECTED
        if self._stopping:
            return
        if was_connected:
            logger.warning("Broker connection lost", extra={"reason": reason})
        self.schedule_reconnect()

    # ------------------------------------------------------------------
    # paho callbacks (network thread)

    def _on_connect(
        self,
        client: mqtt.Client,
        _userdata: Any,
        _flags: Any,
        reason_code: Any,
        _properties: Any = None,
    ) -> None:
        if reason_code.is_failure:
            logger.error("Broker refused connection", extra={"reason_code": str(reason_code)})
            self._notify_connack(client, ConnectionError(f"connection refused: {reason_code}"))
            return
        for topic in self._config.mqtt_topics:
            client.subscribe(topic, qos=self._config.mqtt_qos)
        logger.info(
            "Broker client subscribed",
            extra={"topics": self._config.mqtt_topics, "qos": self._config.mqtt_qos},
        )
        self._notify_connack(client, None)

    def _on_connect_fail(self, client: mqtt.Client, _userdata: Any) -> None:
        self._notify_connack(client, ConnectionError("connect failed"))

    def _on_disconnect(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        _flags: Any,
        reason_code: Any,
        _properties: Any = None,
    ) -> None:
        if self._loop is None:
            return
        if getattr(reason_code, "is_failure", False):
            logger.warning("Unexpected broker disconnect", extra={"reason_code": str(reason_code)})
        else:
            logger.info("Broker client disconnected")
        self._loop.call_soon_threadsafe(self._handle_connection_lost, f"disconnect: {reason_code}")

    def _on_message(self, _client: mqtt.Client, _userdata: Any, msg: MQTTMessage) -> None:
        if not self._queue or not self._loop:
            logger.warning("Received broker message before initialisation")
            return
        payload = msg.payload or b""
        asyncio.run_coroutine_threadsafe(
            self._queue.put(_QueuedMessage(topic=msg.topic, payload=payload)),
            self._loop,
        )

    def _notify_connack(self, client: mqtt.Client, error: Exception | None) -> None:
        if self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._resolve_connack, client, error)

    def _resolve_connack(self, client: mqtt.Client, error: Exception | None) -> None:
        if client is not self._client:
            return
        future = self._connack
        if future is not None and not future.done():
            if error is None:
                future.set_result(None)
            else:
                future.set_exception(error)
            return
        if error is not None:
            self._handle_connection_lost(str(error))
            return
        # paho's network loop reconnected the current client on its own.
        if self._stopping or self.is_connected:
            return
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        self._state = ConnectionState.CONNECTED
        logger.info("Broker connection restored", extra={"host": self._config.mqtt_host})

    # ------------------------------------------------------------------
    # inbound pipeline

    async def _process_queue(self) -> None:
        assert self._queue is not None
        while True:
            message = await self._queue.get()
            try:
                if self._handler is None:
                    logger.debug("No handler for broker message", extra={"topic": message.topic})
                else:
                    await self._handler(message.topic, message.payload)
            except Exception as e:
                logger.exception(
                    "Failed to process broker message",
                    extra={
                        "topic": message.topic,
                        "payload_size": len(message.payload),
                        "error": str(e),
                    },
                )
            finally:
                self._queue.task_done()
