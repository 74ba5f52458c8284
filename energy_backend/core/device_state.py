"""Device connection state machine."""

from __future__ import annotations

from enum import Enum

from energy_backend.errors import InvalidStatusTransitionError


class DeviceStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CONFIGURING = "configuring"

    @classmethod
    def parse(cls, value: str | None) -> DeviceStatus | None:
        """Map a device-reported status string onto a state, or None if unknown."""
        if value is None:
            return None
        return _ALIASES.get(value.strip().lower())

    @property
    def is_online(self) -> bool:
        return self is not DeviceStatus.DISCONNECTED


_ALIASES = {
    "connected": DeviceStatus.CONNECTED,
    "online": DeviceStatus.CONNECTED,
    "disconnected": DeviceStatus.DISCONNECTED,
    "offline": DeviceStatus.DISCONNECTED,
    "configuring": DeviceStatus.CONFIGURING,
}

TRANSITIONS: dict[DeviceStatus, frozenset[DeviceStatus]] = {
    DeviceStatus.DISCONNECTED: frozenset({DeviceStatus.CONNECTED}),
    DeviceStatus.CONNECTED: frozenset({DeviceStatus.DISCONNECTED, DeviceStatus.CONFIGURING}),
    DeviceStatus.CONFIGURING: frozenset({DeviceStatus.CONNECTED, DeviceStatus.DISCONNECTED}),
}


def can_transition(current: DeviceStatus, target: DeviceStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(current: DeviceStatus | str, target: DeviceStatus | str) -> bool:
    """Validate ``current -> target``.

    Returns False for a no-op (same state), True for a real transition and
    raises ``InvalidStatusTransitionError`` otherwise.
    """
    current = DeviceStatus(current)
    target = DeviceStatus(target)
    if current is target:
        return False
    if not can_transition(current, target):
        raise InvalidStatusTransitionError(
            f"Cannot move device from {current.value} to {target.value}",
            current=current.value,
            target=target.value,
        )
    return True
