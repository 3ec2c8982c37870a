"""API Routes Package."""

from api.routes import health, status

__all__ = [
    "health",
    "status",
]
