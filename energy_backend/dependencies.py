"""FastAPI dependency providers."""

from energy_backend.db.database import get_session

__all__ = ["get_session"]
