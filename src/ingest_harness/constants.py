"""Stable constants shared across the harness."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
CATALOG_SCHEMA_VERSION: Final[int] = 1

DEFAULT_CONFIG_FILE: Final[str] = "harness.toml"
ENV_PREFIX: Final[str] = "INGEST_HARNESS_"
DEFAULT_LOGGER_NAME: Final[str] = "ingest_harness"

# Report layout: name left-aligned in a fixed-width column, then the label.
REPORT_NAME_WIDTH: Final[int] = 30
REPORT_HEADER: Final[str] = "---Results---"
PASS_LABEL: Final[str] = "PASS"
FAIL_LABEL: Final[str] = "FAIL"

# Readiness polling defaults (seconds).
DEFAULT_POLL_INTERVAL_SECONDS: Final[float] = 5.0
DEFAULT_READINESS_TIMEOUT_SECONDS: Final[float] = 120.0

# Grace period between SIGTERM and SIGKILL when stopping services.
DEFAULT_STOP_GRACE_SECONDS: Final[float] = 5.0

__all__ = [
    "CATALOG_SCHEMA_VERSION",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_LOGGER_NAME",
    "DEFAULT_POLL_INTERVAL_SECONDS",
    "DEFAULT_READINESS_TIMEOUT_SECONDS",
    "DEFAULT_STOP_GRACE_SECONDS",
    "ENV_PREFIX",
    "FAIL_LABEL",
    "PASS_LABEL",
    "REPORT_HEADER",
    "REPORT_NAME_WIDTH",
]
