"""Status dashboard endpoints.

Read-only views of the session, the last cycle, metrics and missed
deliveries, plus operator actions: trigger a cycle, send the report now,
restart a FAILED session.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from core.models.documents import CycleResult, MissedDeliveryRecord
from core.models.lifecycle import SessionState
from core.observability.metrics import get_metrics
from session.supervisor import SessionSnapshot

logger = logging.getLogger(__name__)

router = APIRouter()

# Background operator actions, kept referenced until done
_background: set = set()


def get_service(request: Request):
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not running")
    return service


def _spawn(coro, name: str) -> None:
    task = asyncio.create_task(coro, name=name)
    _background.add(task)
    task.add_done_callback(_background.discard)


# =============================================================================
# Response Models
# =============================================================================

class StatusResponse(BaseModel):
    session: SessionSnapshot
    cycle_running: bool
    last_cycle: Optional[CycleResult] = None
    missed_pending: int
    test_mode: bool
    metrics: Dict[str, Any]


class ActionResponse(BaseModel):
    accepted: bool
    message: str


class ArtifactInfo(BaseModel):
    filename: str
    size_bytes: int


# =============================================================================
# Views
# =============================================================================

@router.get("", response_model=StatusResponse)
async def get_status(service=Depends(get_service)) -> StatusResponse:
    return StatusResponse(
        session=service.supervisor.snapshot(),
        cycle_running=service.orchestrator.running,
        last_cycle=service.orchestrator.last_result,
        missed_pending=len(service.missed.unique()),
        test_mode=service.config.delivery.test_mode,
        metrics=get_metrics().get_summary(),
    )


@router.get("/session", response_model=SessionSnapshot)
async def get_session(service=Depends(get_service)) -> SessionSnapshot:
    """Session state, age and the pairing code while one is pending."""
    return service.supervisor.snapshot()


@router.get("/missed", response_model=List[MissedDeliveryRecord])
async def get_missed(service=Depends(get_service)) -> List[MissedDeliveryRecord]:
    """Deduplicated missed deliveries since the last report."""
    return service.missed.unique()


@router.get("/artifacts", response_model=List[ArtifactInfo])
async def get_artifacts(service=Depends(get_service)) -> List[ArtifactInfo]:
    return [
        ArtifactInfo(filename=p.name, size_bytes=p.stat().st_size)
        for p in service.store.list_artifacts()
    ]


# =============================================================================
# Operator Actions
# =============================================================================

@router.post("/cycle", response_model=ActionResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_cycle(service=Depends(get_service)) -> ActionResponse:
    """Run a delivery cycle now."""
    if service.orchestrator.running:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A cycle is already running")
    if not service.supervisor.is_ready:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Session is {service.supervisor.state.value}",
        )
    _spawn(service.orchestrator.run_cycle(), "manual-cycle")
    logger.info("Manual delivery cycle triggered")
    return ActionResponse(accepted=True, message="Delivery cycle started")


@router.post("/report", response_model=ActionResponse)
async def send_report(service=Depends(get_service)) -> ActionResponse:
    """Send the missed-delivery report now."""
    sent = await service.reporter.send_report()
    if sent:
        return ActionResponse(accepted=True, message="Report sent")
    return ActionResponse(accepted=False, message="Nothing to report or email failed")


@router.post("/session/start", response_model=ActionResponse, status_code=status.HTTP_202_ACCEPTED)
async def restart_session(service=Depends(get_service)) -> ActionResponse:
    """Start the session again after it FAILED (or before it was ever started)."""
    current = service.supervisor.state
    if current not in (SessionState.FAILED, SessionState.UNINITIALIZED):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Session is {current.value}",
        )
    _spawn(service.start_session(), "manual-session-start")
    logger.info("Manual session start requested")
    return ActionResponse(accepted=True, message="Session start requested")
