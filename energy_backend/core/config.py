from __future__ import annotations
# BaseSettings moved to the pydantic-settings package in Pydantic v2
from collections.abc import Iterable
from zoneinfo import ZoneInfo

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


def _unique(iterable: Iterable[str | None]) -> list[str]:
    """Return a list of non-empty unique strings preserving order."""

    seen: set[str] = set()
    ordered: list[str] = []
    for value in iterable:
        if not value:
            continue
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    db_host: str = Field(alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field(alias="DB_USER")
    db_password: str = Field(alias="DB_PASSWORD")
    db_name: str = Field(alias="DB_NAME")
    db_timeout: int = Field(30, alias="DB_TIMEOUT")

    mqtt_enabled: bool = Field(False, alias="MQTT_ENABLED")
    mqtt_host: str | None = Field(None, alias="MQTT_HOST")
    mqtt_port: int = Field(8883, alias="MQTT_PORT")
    mqtt_client_id: str | None = Field(None, alias="MQTT_CLIENT_ID")
    mqtt_username: str | None = Field(None, alias="MQTT_USERNAME")
    mqtt_password: str | None = Field(None, alias="MQTT_PASSWORD")
    mqtt_keepalive: int = Field(60, alias="MQTT_KEEPALIVE")
    mqtt_use_tls: bool = Field(True, alias="MQTT_USE_TLS")
    mqtt_ca_cert: str | None = Field(None, alias="MQTT_CA_CERT")
    mqtt_topic_data: str = Field("sparknova/powerdata", alias="MQTT_TOPIC_DATA")
    mqtt_topic_status: str = Field("sparknova/status", alias="MQTT_TOPIC_STATUS")
    mqtt_topic_logs: str = Field("sparknova/logs", alias="MQTT_TOPIC_LOGS")
    mqtt_topic_control: str = Field("sparknova/control", alias="MQTT_TOPIC_CONTROL")
    mqtt_additional_topics: list[str] = Field(default_factory=list, alias="MQTT_TOPICS")
    mqtt_qos: int = Field(2, alias="MQTT_QOS")

    # Connection manager timings (seconds)
    mqtt_reconnect_delay_s: float = Field(5.0, alias="MQTT_RECONNECT_DELAY_S")
    mqtt_connect_timeout_s: float = Field(30.0, alias="MQTT_CONNECT_TIMEOUT_S")
    command_timeout_s: float = Field(5.0, alias="COMMAND_TIMEOUT_S")

    # Relay command retry policy
    relay_command_attempts: int = Field(2, alias="RELAY_COMMAND_ATTEMPTS")
    relay_command_timeout_s: float = Field(2.0, alias="RELAY_COMMAND_TIMEOUT_S")
    relay_retry_delay_s: float = Field(0.5, alias="RELAY_RETRY_DELAY_S")
    command_ack_grace_s: float = Field(0.5, alias="COMMAND_ACK_GRACE_S")

    # Duplicate suppression
    message_dedup_window_s: float = Field(1.0, alias="MESSAGE_DEDUP_WINDOW_S")
    status_debounce_s: float = Field(2.0, alias="STATUS_DEBOUNCE_S")
    dedup_cache_max_entries: int = Field(1024, alias="DEDUP_CACHE_MAX_ENTRIES")

    # Time synchronisation
    time_sync_enabled: bool = Field(True, alias="TIME_SYNC_ENABLED")
    time_sync_device_id: str = Field("SN001", alias="TIME_SYNC_DEVICE_ID")
    time_sync_verify_delay_s: float = Field(10.0, alias="TIME_SYNC_VERIFY_DELAY_S")
    clock_drift_threshold_s: float = Field(300.0, alias="CLOCK_DRIFT_THRESHOLD_S")

    # Device heartbeat
    device_offline_timeout_s: int = Field(300, alias="DEVICE_OFFLINE_TIMEOUT_S")
    device_heartbeat_check_interval_s: int = Field(60, alias="DEVICE_HEARTBEAT_CHECK_INTERVAL_S")

    # Domain defaults
    timezone: str = Field("Asia/Jakarta", alias="TIMEZONE")
    usage_increment_mode: str = Field("delta", alias="USAGE_INCREMENT_MODE")
    default_power_limit_w: float = Field(2200.0, alias="DEFAULT_POWER_LIMIT_W")
    default_service_type: str = Field("R1_900VA", alias="DEFAULT_SERVICE_TYPE")
    admin_fee_rate: float = Field(0.01, alias="ADMIN_FEE_RATE")

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
        "extra": "ignore",
        "env_nested_delimiter": "__",
        "populate_by_name": True,
    }

    @field_validator("mqtt_additional_topics", mode="before")
    @classmethod
    def _split_topics(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            parts = [part.strip() for part in value.replace("\n", ",").split(",")]
            return [part for part in parts if part]
        if isinstance(value, list):
            return [part for part in value if isinstance(part, str) and part]
        return []

    @field_validator("usage_increment_mode")
    @classmethod
    def _check_increment_mode(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in ("delta", "cumulative"):
            raise ValueError("USAGE_INCREMENT_MODE must be 'delta' or 'cumulative'")
        return value

    @property
    def sqlalchemy_database_uri(self) -> str:
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def mqtt_control_wildcard(self) -> str:
        return f"{self.mqtt_topic_control}/+"

    def control_topic(self, device_id: str) -> str:
        return f"{self.mqtt_topic_control}/{device_id}"

    @property
    def mqtt_topics(self) -> list[str]:
        """List of topics the backend should subscribe to."""

        return _unique(
            [
                self.mqtt_topic_data,
                self.mqtt_topic_status,
                self.mqtt_topic_logs,
                self.mqtt_control_wildcard,
                *self.mqtt_additional_topics,
            ]
        )


_settings_instance = None


def get_settings():
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance


settings = get_settings()
