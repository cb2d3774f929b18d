"""Logging configuration using structlog."""

import logging
import sys
from collections import deque
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

from autodeploy.config import Settings, settings as default_settings

# Loggers under this namespace also write to the deployment log file
DEPLOYMENT_LOGGER = "autodeploy.deploy"

_deployment_handler: logging.Handler | None = None


def configure_logging(settings: Settings | None = None) -> None:
    """Configure structured logging for the application."""
    settings = settings or default_settings

    # Ensure log directory exists and set up handlers for both stdout and file output
    log_dir = settings.resolve_path(settings.log_directory)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / settings.log_file_name

    handlers = [
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(log_file, encoding="utf-8"),
    ]

    # Set up standard library logging
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, settings.log_level),
        handlers=handlers,
        force=True,
    )

    _attach_deployment_log(settings.resolve_path(settings.deployment_log_file))

    # Configure structlog
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    # Add renderer based on format
    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _attach_deployment_log(path: Path) -> None:
    """Route the deployment logger namespace into its own rolling file."""
    global _deployment_handler

    path.parent.mkdir(parents=True, exist_ok=True)
    deploy_logger = logging.getLogger(DEPLOYMENT_LOGGER)
    if _deployment_handler is not None:
        deploy_logger.removeHandler(_deployment_handler)
        _deployment_handler.close()

    _deployment_handler = RotatingFileHandler(
        path, maxBytes=1_000_000, backupCount=3, encoding="utf-8"
    )
    _deployment_handler.setFormatter(logging.Formatter("%(message)s"))
    deploy_logger.addHandler(_deployment_handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def tail_log(path: Path, lines: int = 100) -> list[str]:
    """Return the last ``lines`` lines of a log file, or [] if it is missing."""
    if not path.exists():
        return []
    with open(path, encoding="utf-8", errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=lines)]
