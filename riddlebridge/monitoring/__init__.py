"""Monitoring: structured logging."""

from riddlebridge.monitoring.logging import (
    LoggingContextMiddleware,
    configure_logging,
    get_logger,
    log_duration,
    redact_secrets,
)

__all__ = [
    "LoggingContextMiddleware",
    "configure_logging",
    "get_logger",
    "log_duration",
    "redact_secrets",
]
