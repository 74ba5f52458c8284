"""Composition root wiring."""
from energy_backend.main import app, build_services
from conftest import build_settings


def test_build_services_wires_pipeline():
    async def session_factory():
        yield None

    services = build_services(config=build_settings(), session_factory=session_factory)

    connection = services["connection"]
    assert connection._handler == services["dispatcher"].handle_message
    assert services["recorder"]._on_device_online == services["time_sync"].on_device_online
    assert services["energy_service"]._control is services["device_control"]


def test_routes_registered():
    paths = {getattr(route, "path", None) for route in app.routes}
    assert {"/health", "/health/broker", "/health/db-check"} <= paths
