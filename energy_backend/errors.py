"""Exception taxonomy shared by the ingestion pipeline and the service facade."""

from __future__ import annotations


class EnergyBackendError(Exception):
    """Base class for errors surfaced by the backend.

    ``status_code`` is the HTTP-equivalent status a REST caller should map
    the failure to.
    """

    status_code = 500

    def __init__(self, message: str, **details) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ConnectionManagerError(RuntimeError):
    """Raised when the broker connection manager cannot be started."""


# Transport ------------------------------------------------------------------


class TransportError(EnergyBackendError):
    status_code = 503


class BrokerUnavailableError(TransportError):
    """No usable broker connection."""


class PublishError(TransportError):
    """The broker rejected or failed a publish."""


class CommandTimeoutError(TransportError):
    """The broker did not acknowledge a publish in time."""

    status_code = 504


class CommandFailedError(TransportError):
    """A device command failed after all retries were exhausted."""


# Validation -----------------------------------------------------------------


class ReadingValidationError(EnergyBackendError):
    status_code = 400


class InvalidDeviceConfigError(EnergyBackendError):
    status_code = 422


class InvalidStatusTransitionError(EnergyBackendError):
    status_code = 409


# Lookup / ownership ---------------------------------------------------------


class DeviceNotFoundError(EnergyBackendError):
    status_code = 404

    def __init__(self, device_id: str) -> None:
        super().__init__(f"Device {device_id} not found", device_id=device_id)
        self.device_id = device_id


class DeviceAccessDeniedError(EnergyBackendError):
    status_code = 403

    def __init__(self, device_id: str, user_id: str) -> None:
        super().__init__(
            f"User {user_id} does not own device {device_id}",
            device_id=device_id,
            user_id=user_id,
        )
        self.device_id = device_id
        self.user_id = user_id


class AlertNotFoundError(EnergyBackendError):
    status_code = 404
