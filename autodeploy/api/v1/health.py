"""Health check endpoints."""

import time
from datetime import datetime

from fastapi import APIRouter
from pydantic import BaseModel

from autodeploy import __version__
from autodeploy.api.deps import OrchestratorDep
from autodeploy.models.deployment import utc_now

router = APIRouter()

_started_at = time.monotonic()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str
    environment: str
    uptime_seconds: float
    deployment_state: str
    timestamp: datetime


@router.get("/health", response_model=HealthResponse)
async def health_check(orchestrator: OrchestratorDep) -> HealthResponse:
    """Check API health status."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        environment=orchestrator.settings.app_env,
        uptime_seconds=round(time.monotonic() - _started_at, 1),
        deployment_state=orchestrator.state.value,
        timestamp=utc_now(),
    )
