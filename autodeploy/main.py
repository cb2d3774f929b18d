"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from autodeploy import __version__
from autodeploy.api.middleware import RequestLoggingMiddleware
from autodeploy.api.v1.router import router as v1_router
from autodeploy.config import settings
from autodeploy.core.exceptions import (
    AutoDeployError,
    DeploymentInProgressError,
    PreflightError,
    SignatureVerificationError,
)
from autodeploy.core.orchestrator import get_orchestrator
from autodeploy.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)

ERROR_STATUS_CODES: dict[type[AutoDeployError], int] = {
    SignatureVerificationError: status.HTTP_401_UNAUTHORIZED,
    DeploymentInProgressError: status.HTTP_429_TOO_MANY_REQUESTS,
    PreflightError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    configure_logging()
    logger.info(
        "application.starting",
        version=__version__,
        environment=settings.app_env,
        repo_dir=str(settings.repo_path),
        service=settings.service_name,
        service_backend=settings.service_backend,
    )

    orchestrator = get_orchestrator()
    if settings.preflight_on_startup:
        try:
            await orchestrator.run_preflight()
        except PreflightError as e:
            # Retried before the first deployment attempt
            logger.warning("application.preflight_failed", error=e.message)

    yield

    # Shutdown
    if orchestrator.in_progress:
        logger.warning("application.waiting_for_deployment")
        await orchestrator.wait()
    logger.info("application.shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="autodeploy",
        description="Webhook-driven deployment with backup and rollback for gateway hosts",
        version=__version__,
        docs_url="/docs" if settings.app_debug else None,
        redoc_url="/redoc" if settings.app_debug else None,
        lifespan=lifespan,
    )

    # Add middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # Register exception handlers
    @app.exception_handler(AutoDeployError)
    async def autodeploy_error_handler(
        request: Request, exc: AutoDeployError
    ) -> JSONResponse:
        """Handle application-specific errors."""
        status_code = ERROR_STATUS_CODES.get(
            type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        return JSONResponse(
            status_code=status_code,
            content={
                "error": {
                    "code": type(exc).__name__.upper(),
                    "message": exc.message,
                    "details": exc.details,
                }
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected errors."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            path=request.url.path,
            exc_info=True,
        )

        if settings.is_development:
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": {
                        "code": "INTERNAL_ERROR",
                        "message": str(exc),
                        "type": type(exc).__name__,
                    }
                },
            )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                }
            },
        )

    # Include routers
    app.include_router(v1_router)

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "autodeploy.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
    )
