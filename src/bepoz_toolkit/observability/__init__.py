"""Public observability primitives: structured logging and the notification channel."""

from bepoz_toolkit.observability.logging import (
    LoggingConfig,
    StructuredLoggingHandle,
    configure_structlog,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    redact_mapping,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)
from bepoz_toolkit.observability.notifications import (
    Notification,
    NotificationChannel,
    NotificationLevel,
)

__all__ = [
    "LoggingConfig",
    "Notification",
    "NotificationChannel",
    "NotificationLevel",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "redact_mapping",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
