"""Observability package for logging."""

from propscout_core.observability.logging import (
    JsonFormatter,
    RequestContext,
    StructuredLogger,
    bind_request_context,
    bind_user,
    configure_logging,
    current_request_context,
    get_logger,
)

__all__ = [
    "JsonFormatter",
    "RequestContext",
    "StructuredLogger",
    "bind_request_context",
    "bind_user",
    "configure_logging",
    "current_request_context",
    "get_logger",
]
