"""Public observability primitives: per-run structured logging and correlation."""

from conveyor.observability.logging import (
    JsonLineFormatter,
    LoggingConfig,
    RunLoggingHandle,
    correlation_scope,
    get_correlation_context,
    setup_run_logging,
)

__all__ = [
    "JsonLineFormatter",
    "LoggingConfig",
    "RunLoggingHandle",
    "correlation_scope",
    "get_correlation_context",
    "setup_run_logging",
]
