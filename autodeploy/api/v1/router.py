"""Main router for API v1."""

from fastapi import APIRouter

from autodeploy.api.v1 import deploy, health

router = APIRouter(prefix="/v1")

# Include sub-routers
router.include_router(health.router, tags=["health"])
router.include_router(deploy.router, prefix="/deploy", tags=["deploy"])
