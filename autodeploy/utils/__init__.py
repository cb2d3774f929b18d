"""Utility functions for autodeploy."""

from autodeploy.utils.logging import configure_logging, get_logger, tail_log

__all__ = [
    "configure_logging",
    "get_logger",
    "tail_log",
]
