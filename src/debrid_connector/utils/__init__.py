"""Shared utilities."""

from .logging import get_logger, setup_logging, log_execution_time, log_async_execution_time

__all__ = [
    "get_logger",
    "setup_logging",
    "log_execution_time",
    "log_async_execution_time",
]
