"""Dependency injection for API endpoints."""

import hmac
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from autodeploy.core.events import EventBus, get_event_bus
from autodeploy.core.orchestrator import DeploymentOrchestrator, get_orchestrator
from autodeploy.core.webhook import WebhookVerifier
from autodeploy.utils.logging import get_logger

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_deployer() -> DeploymentOrchestrator:
    """Get the deployment orchestrator."""
    return get_orchestrator()


async def get_events() -> EventBus:
    """Get the event bus."""
    return get_event_bus()


async def get_verifier(
    orchestrator: Annotated[DeploymentOrchestrator, Depends(get_deployer)],
) -> WebhookVerifier:
    """Build the webhook verifier from the orchestrator's settings."""
    settings = orchestrator.settings
    return WebhookVerifier(
        secret=settings.github_webhook_secret,
        allow_unsigned=settings.allow_unsigned_webhooks,
    )


async def require_deploy_token(
    orchestrator: Annotated[DeploymentOrchestrator, Depends(get_deployer)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> None:
    """Require a valid bearer token for manual deployments."""
    settings = orchestrator.settings
    expected = settings.deploy_api_token

    if not expected:
        if settings.is_development:
            logger.warning("auth.token_not_configured", action="allowing")
            return
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Deploy API token not configured",
        )

    if credentials is None or not hmac.compare_digest(
        credentials.credentials.encode(), expected.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )


# Type aliases for cleaner signatures
OrchestratorDep = Annotated[DeploymentOrchestrator, Depends(get_deployer)]
EventsDep = Annotated[EventBus, Depends(get_events)]
VerifierDep = Annotated[WebhookVerifier, Depends(get_verifier)]
