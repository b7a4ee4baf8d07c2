"""Observability module for request-scoped logging and background side effects."""

from .background import BackgroundTasks
from .logging import bind_request_context, clear_request_context, get_request_logger, setup_structured_logging

__all__ = [
    "BackgroundTasks",
    "bind_request_context",
    "clear_request_context",
    "get_request_logger",
    "setup_structured_logging",
]
