"""Health check endpoints."""

from datetime import datetime, timezone
from typing import Dict

from fastapi import APIRouter, Request, Response, status
from pydantic import BaseModel

from core import __version__


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    version: str
    services: Dict[str, str]


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint.

    The service is "degraded" whenever the transport session is not READY;
    deliveries are paused until it recovers.
    """
    service = getattr(request.app.state, "service", None)
    if service is None:
        services = {"api": "up", "session": "unknown", "erp": "unknown"}
        overall = "healthy"
    else:
        session_state = service.supervisor.state.value
        services = {
            "api": "up",
            "session": session_state,
            "erp": service.source.connection_status.value,
        }
        overall = "healthy" if service.supervisor.is_ready else "degraded"

    return HealthResponse(
        status=overall,
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        services=services,
    )


@router.get("/ready")
async def readiness_check(request: Request, response: Response) -> Dict[str, str]:
    """Readiness probe: 503 until the transport session is READY."""
    service = getattr(request.app.state, "service", None)
    if service is None or not service.supervisor.is_ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready"}
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """Liveness probe."""
    return {"status": "alive"}
