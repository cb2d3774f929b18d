"""Deployment endpoints: webhook, manual trigger, status, logs and events."""

import asyncio
import json
import os
import signal
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sse_starlette.sse import EventSourceResponse

from autodeploy.api.deps import EventsDep, OrchestratorDep, VerifierDep, require_deploy_token
from autodeploy.config import Settings
from autodeploy.core.events import TERMINAL_EVENTS, Event
from autodeploy.core.exceptions import SignatureVerificationError
from autodeploy.core.webhook import is_deploy_ref
from autodeploy.models.deployment import CommitInfo, DeploymentRecord, DeploymentStatus, PushPayload
from autodeploy.utils.logging import get_logger, tail_log

logger = get_logger(__name__)

router = APIRouter()

# Delay before the process exits after a successful deployment
RESTART_DELAY_SECONDS = 1.0


class TriggerResponse(BaseModel):
    """Response returned when a deployment is started or a push is ignored."""

    message: str
    commit: str | None = None
    branch: str | None = None


class LogsResponse(BaseModel):
    """Tail of the deployment log."""

    logs: list[str]


def _restart_on_success(task: "asyncio.Task[DeploymentRecord]", settings: Settings) -> None:
    """Exit after a successful deployment so the OS supervisor restarts the service."""
    if not settings.auto_restart:
        return

    def _callback(done: "asyncio.Task[DeploymentRecord]") -> None:
        if done.cancelled() or done.exception() is not None:
            return
        logger.info("application.restarting", reason="auto_restart", delay=RESTART_DELAY_SECONDS)
        asyncio.get_running_loop().call_later(
            RESTART_DELAY_SECONDS, os.kill, os.getpid(), signal.SIGTERM
        )

    task.add_done_callback(_callback)


@router.post(
    "/webhook",
    response_model=TriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Handle a push webhook",
    description="Verifies the HMAC signature of the raw body and deploys pushes to the configured branch.",
)
async def handle_webhook(
    request: Request,
    orchestrator: OrchestratorDep,
    verifier: VerifierDep,
    x_hub_signature_256: Annotated[str | None, Header()] = None,
    x_github_event: Annotated[str | None, Header()] = None,
) -> TriggerResponse | JSONResponse:
    """Start a deployment for a verified push to the deploy branch."""
    body = await request.body()

    if not verifier.verify(body, x_hub_signature_256):
        logger.error("webhook.invalid_signature", github_event=x_github_event)
        raise SignatureVerificationError()

    if x_github_event == "ping":
        return JSONResponse(content={"message": "pong"})

    try:
        payload = PushPayload.model_validate_json(body)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid push payload: {e.error_count()} validation error(s)",
        )

    branch = orchestrator.settings.deploy_branch
    if not is_deploy_ref(payload.ref, branch):
        logger.info("webhook.ignored", ref=payload.ref, deploy_branch=branch)
        return JSONResponse(content={"message": f"Ignored - not {branch} branch"})

    commit = payload.to_commit()
    logger.info(
        "webhook.received",
        commit=commit.id,
        message=commit.message,
        author=commit.author,
    )

    task = orchestrator.trigger(commit)
    _restart_on_success(task, orchestrator.settings)

    return TriggerResponse(message="Deployment started", commit=commit.id, branch=branch)


@router.post(
    "",
    response_model=TriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_deploy_token)],
    summary="Trigger a manual deployment",
)
async def manual_deploy(orchestrator: OrchestratorDep) -> TriggerResponse:
    """Deploy the current head of the deploy branch."""
    commit = CommitInfo.manual(orchestrator.settings.deploy_branch)
    logger.info("deploy.manual_triggered")

    task = orchestrator.trigger(commit)
    _restart_on_success(task, orchestrator.settings)

    return TriggerResponse(message="Manual deployment started", branch=commit.branch)


@router.get(
    "/status",
    response_model=DeploymentStatus,
    summary="Get deployment status",
)
async def get_status(orchestrator: OrchestratorDep) -> DeploymentStatus:
    """Report whether a deployment is running and the last recorded outcome."""
    return orchestrator.status()


@router.get(
    "/logs",
    response_model=LogsResponse,
    summary="Get recent deployment log lines",
)
async def get_logs(
    orchestrator: OrchestratorDep,
    lines: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> LogsResponse:
    """Return the last lines of the deployment log."""
    settings = orchestrator.settings
    path = settings.resolve_path(settings.deployment_log_file)
    try:
        log_lines = await asyncio.to_thread(tail_log, path, lines)
    except OSError as e:
        logger.error("deploy.logs_read_failed", path=str(path), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to read logs",
        )

    return LogsResponse(logs=log_lines or ["No deployment logs found"])


@router.get(
    "/events",
    summary="Stream deployment events (SSE)",
)
async def stream_deployment_events(
    orchestrator: OrchestratorDep,
    events: EventsDep,
    follow: Annotated[bool, Query(description="Keep streaming after a deployment finishes")] = True,
) -> EventSourceResponse:
    """Stream real-time deployment progress using Server-Sent Events."""

    async def event_generator():
        queue = events.subscribe()

        try:
            yield {
                "event": "connected",
                "data": json.dumps(
                    {
                        "state": orchestrator.state.value,
                        "deployment_in_progress": orchestrator.in_progress,
                    }
                ),
            }

            while True:
                try:
                    event: Event = await asyncio.wait_for(queue.get(), timeout=30.0)
                    yield event.to_sse()

                    if not follow and event.event_type in TERMINAL_EVENTS:
                        break

                except asyncio.TimeoutError:
                    # Send keepalive
                    yield {"event": "keepalive", "data": "{}"}

        finally:
            events.unsubscribe(queue)

    return EventSourceResponse(event_generator())
