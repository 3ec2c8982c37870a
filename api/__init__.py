"""API Package.

FastAPI status dashboard for the document delivery service.
"""

from api.server import create_app

__all__ = [
    "create_app",
]
