"""Run log and correlation scopes."""

from ingest_harness.observability.logging import (
    REDACTED,
    RUN_LOG_FILENAME,
    RunLog,
    configure_structlog,
    correlation_scope,
    current_correlation,
    redact,
    setup_logging,
)

__all__ = [
    "REDACTED",
    "RUN_LOG_FILENAME",
    "RunLog",
    "configure_structlog",
    "correlation_scope",
    "current_correlation",
    "redact",
    "setup_logging",
]
