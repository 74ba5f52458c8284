import pytest

from energy_backend.core.device_state import DeviceStatus, can_transition, ensure_transition
from energy_backend.errors import InvalidStatusTransitionError


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("connected", DeviceStatus.CONNECTED),
        ("online", DeviceStatus.CONNECTED),
        (" OFFLINE ", DeviceStatus.DISCONNECTED),
        ("configuring", DeviceStatus.CONFIGURING),
        ("rebooting", None),
        (None, None),
    ],
)
def test_parse(raw, expected):
    assert DeviceStatus.parse(raw) is expected


def test_transitions():
    assert can_transition(DeviceStatus.DISCONNECTED, DeviceStatus.CONNECTED)
    assert can_transition(DeviceStatus.CONNECTED, DeviceStatus.CONFIGURING)
    assert can_transition(DeviceStatus.CONFIGURING, DeviceStatus.CONNECTED)
    assert can_transition(DeviceStatus.CONFIGURING, DeviceStatus.DISCONNECTED)
    assert not can_transition(DeviceStatus.DISCONNECTED, DeviceStatus.CONFIGURING)


def test_ensure_transition_same_state_is_noop():
    assert ensure_transition("connected", DeviceStatus.CONNECTED) is False


def test_ensure_transition_valid():
    assert ensure_transition("connected", "disconnected") is True


def test_ensure_transition_invalid_raises():
    with pytest.raises(InvalidStatusTransitionError) as exc_info:
        ensure_transition("disconnected", DeviceStatus.CONFIGURING)
    assert exc_info.value.status_code == 409
    assert exc_info.value.details == {"current": "disconnected", "target": "configuring"}


def test_is_online():
    assert DeviceStatus.CONFIGURING.is_online
    assert not DeviceStatus.DISCONNECTED.is_online
