"""Public observability primitives: structured logging and fallback transition events."""

from execution_policy.observability.events import (
    CompositeTransitionObserver,
    FallbackTransition,
    LoggingTransitionObserver,
    ObserverError,
    TransitionObserver,
    TransitionRecorder,
)
from execution_policy.observability.logging import (
    LoggingConfig,
    StructuredLoggingHandle,
    configure_structlog,
    correlation_scope,
    flush_logging,
    get_active_logging_handle,
    get_correlation_context,
    reset_correlation_fields,
    set_correlation_fields,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "CompositeTransitionObserver",
    "FallbackTransition",
    "LoggingConfig",
    "LoggingTransitionObserver",
    "ObserverError",
    "StructuredLoggingHandle",
    "TransitionObserver",
    "TransitionRecorder",
    "configure_structlog",
    "correlation_scope",
    "flush_logging",
    "get_active_logging_handle",
    "get_correlation_context",
    "reset_correlation_fields",
    "set_correlation_fields",
    "setup_structured_logging",
    "shutdown_logging",
]
