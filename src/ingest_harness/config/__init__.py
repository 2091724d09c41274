"""
ingest-harness config package public API.

Purpose
- Export config loading/validation entrypoints, the typed ``HarnessConfig`` view
  and public error types.

Functional requirements
- Support loading from ``harness.toml`` + ``INGEST_HARNESS_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from ingest_harness.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    load_config,
)
from ingest_harness.config.schema import (
    DEFAULT_CONFIG,
    PATH_FIELDS,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)
from ingest_harness.config.settings import (
    BackendSettings,
    BuildSettings,
    ClusterSettings,
    HarnessConfig,
    ObservabilitySettings,
    PathSettings,
    TimingSettings,
    VerificationSettings,
)

__all__ = [
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "BackendSettings",
    "BuildSettings",
    "ClusterSettings",
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "HarnessConfig",
    "ObservabilitySettings",
    "PathSettings",
    "TimingSettings",
    "VerificationSettings",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "load_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
