"""FastAPI server for the delivery status dashboard.

The dashboard runs inside the worker's event loop (see workers/worker.py)
and reads the live service from ``app.state.service``.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import health, status
from core import __version__

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    logger.info("Delivery dashboard starting up...")

    yield

    logger.info("Delivery dashboard shutting down...")


def create_app(service: Optional[object] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        service: Running DeliveryService; routes answer 503 without one
    """
    app = FastAPI(
        title="Document Delivery Dashboard",
        description="Status and operator actions for ERP document delivery over the chat transport",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.service = service

    # Read-mostly dashboard; operator actions are plain POSTs without credentials
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(status.router, prefix="/status", tags=["Status"])

    return app


# Standalone app (no running service) for OpenAPI generation and local docs
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
