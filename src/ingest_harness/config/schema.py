"""
ingest-harness — configuration schema and validation.

Purpose
- Define authoritative configuration defaults and strict validation rules.

What is included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Deterministic deep-merge helpers.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject embedded secrets; credentials come from the host environment.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from ingest_harness.constants import CONFIG_SCHEMA_VERSION

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {
        "secret",
        "token",
        "password",
        "passwd",
        "apikey",
        "private",
        "credential",
        "credentials",
    }
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_key",
    "secret_key",
    "access_token",
    "client_secret",
    "private_key",
    "password",
    "secret",
)

# Config paths that are normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "exchange_root"),
    ("paths", "pharos_root"),
    ("paths", "dpn_server_root"),
    ("paths", "work_root"),
    ("paths", "log_dir"),
    ("paths", "bin_dir"),
    ("paths", "staging_dir"),
    ("paths", "restore_dir"),
    ("paths", "nsq_data_dir"),
    ("paths", "worker_config"),
    ("paths", "nsq_config"),
    ("paths", "catalog"),
    ("observability", "log_dir"),
)

LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")


class MetaConfig(TypedDict):
    schema_version: int


class PathsConfig(TypedDict):
    exchange_root: str
    pharos_root: str
    dpn_server_root: str
    work_root: str
    log_dir: str
    bin_dir: str
    staging_dir: str
    restore_dir: str
    nsq_data_dir: str
    worker_config: str
    nsq_config: str
    catalog: str


class BuildConfig(TypedDict):
    command: list[str]
    source_dir: str
    timeout_seconds: float


class TestsConfig(TypedDict):
    command: list[str]
    integration_dir: str
    integration_env_var: str
    unit_command: list[str]
    clear_cache_command: list[str]
    timeout_seconds: float


class TimingConfig(TypedDict):
    time_scale: float
    poll_interval_seconds: float
    readiness_timeout_seconds: float
    stop_grace_seconds: float
    run_timeout_seconds: float


class BackendConfig(TypedDict):
    rails_env: str
    server_command: list[str]
    reset_command: list[str]
    fixtures_command: list[str]


class ClusterConfig(TypedDict):
    setup_command: list[str]
    migrate_command: list[str]
    run_command: list[str]
    stale_log_glob: str


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stdout: bool
    redact_secrets: bool


class HarnessConfigPayload(TypedDict):
    meta: MetaConfig
    paths: PathsConfig
    build: BuildConfig
    tests: TestsConfig
    timing: TimingConfig
    backend: BackendConfig
    cluster: ClusterConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[HarnessConfigPayload] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "paths": {
        "exchange_root": "exchange/",
        "pharos_root": "pharos/",
        "dpn_server_root": "dpn-server/",
        "work_root": "tmp/",
        "log_dir": "tmp/logs/",
        "bin_dir": "tmp/bin/",
        "staging_dir": "tmp/staging/",
        "restore_dir": "tmp/restore/",
        "nsq_data_dir": "tmp/nsq/",
        "worker_config": "exchange/config/integration.json",
        "nsq_config": "exchange/config/nsq/integration.config",
        "catalog": "",
    },
    "build": {
        "command": ["go", "build", "-o", "{output}", "{name}.go"],
        "source_dir": "{exchange_root}/apps/{name}",
        "timeout_seconds": 600.0,
    },
    "tests": {
        "command": ["go", "test", "{file}"],
        "integration_dir": "integration",
        "integration_env_var": "RUN_EXCHANGE_INTEGRATION",
        "unit_command": ["go", "test", "./..."],
        "clear_cache_command": ["go", "clean", "-testcache"],
        "timeout_seconds": 1800.0,
    },
    "timing": {
        "time_scale": 1.0,
        "poll_interval_seconds": 5.0,
        "readiness_timeout_seconds": 120.0,
        "stop_grace_seconds": 5.0,
        "run_timeout_seconds": 0.0,
    },
    "backend": {
        "rails_env": "integration",
        "server_command": ["rbenv", "exec", "rails", "server"],
        "reset_command": ["rbenv", "exec", "rake", "pharos:empty_db"],
        "fixtures_command": ["rbenv", "exec", "rake", "db:fixtures:load"],
    },
    "cluster": {
        "setup_command": ["bundle", "exec", "./script/setup_cluster.rb"],
        "migrate_command": ["bundle", "exec", "./script/migrate_cluster.rb"],
        "run_command": ["bundle", "exec", "./script/run_cluster.rb"],
        "stale_log_glob": "impersonate*",
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "tmp/harness-logs/",
        "log_to_stdout": False,
        "redact_secrets": True,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> HarnessConfigPayload:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade harness.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the ingest-harness runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)
    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    if isinstance(redacted, dict):
        return redacted
    return {}


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    validators: dict[str, Callable[[dict[str, object], str, _IssueCollector], dict[str, Any]]] = {
        "meta": _validate_meta,
        "paths": _validate_paths,
        "build": _validate_build,
        "tests": _validate_tests,
        "timing": _validate_timing,
        "backend": _validate_backend,
        "cluster": _validate_cluster,
        "observability": _validate_observability,
    }
    _reject_unknown_keys(payload, set(validators), "", issues)
    _require_keys(payload, set(validators), "", issues)

    out: dict[str, Any] = {}
    for key in sorted(validators):
        raw = payload.get(key)
        if raw is None:
            continue
        section = _as_object(raw, key, issues)
        if section is None:
            continue
        out[key] = validators[key](section, key, issues)
    return out


def _validate_meta(payload: dict[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    _require_keys(payload, {"schema_version"}, path, issues)
    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed = _as_int(payload["schema_version"], _join(path, "schema_version"), issues, minimum=1)
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(_join(path, "schema_version"), migration_guidance(parsed))
    return out


def _validate_paths(
    payload: dict[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["paths"])
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed - {"catalog"}, path, issues)
    out: dict[str, Any] = {}
    for key in sorted(allowed):
        if key not in payload:
            continue
        if key == "catalog":
            raw = payload[key]
            if isinstance(raw, str) and not raw.strip():
                out[key] = ""
                continue
        parsed = _as_path_text(payload[key], _join(path, key), issues)
        if parsed is not None:
            out[key] = parsed
    return out


def _validate_build(
    payload: dict[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"command", "source_dir", "timeout_seconds"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    if "command" in payload:
        argv = _as_argv(payload["command"], _join(path, "command"), issues)
        if argv is not None:
            if not any("{output}" in item for item in argv):
                issues.add(_join(path, "command"), "must reference the {output} placeholder")
            out["command"] = argv
    if "source_dir" in payload:
        parsed = _as_path_text(payload["source_dir"], _join(path, "source_dir"), issues)
        if parsed is not None:
            out["source_dir"] = parsed
    _copy_float(payload, out, "timeout_seconds", path, issues, minimum=0.001)
    return out


def _validate_tests(
    payload: dict[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["tests"])
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    for key in ("command", "unit_command", "clear_cache_command"):
        if key in payload:
            argv = _as_argv(payload[key], _join(path, key), issues)
            if argv is not None:
                out[key] = argv
    if "command" in out and not any("{file}" in item for item in out["command"]):
        issues.add(_join(path, "command"), "must reference the {file} placeholder")
    if "integration_dir" in payload:
        parsed = _as_path_text(payload["integration_dir"], _join(path, "integration_dir"), issues)
        if parsed is not None:
            out["integration_dir"] = parsed
    if "integration_env_var" in payload:
        parsed = _as_env_name(
            payload["integration_env_var"], _join(path, "integration_env_var"), issues
        )
        if parsed is not None:
            out["integration_env_var"] = parsed
    _copy_float(payload, out, "timeout_seconds", path, issues, minimum=0.001)
    return out


def _validate_timing(
    payload: dict[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["timing"])
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    _copy_float(payload, out, "time_scale", path, issues, minimum=0.0)
    _copy_float(payload, out, "poll_interval_seconds", path, issues, minimum=0.001)
    _copy_float(payload, out, "readiness_timeout_seconds", path, issues, minimum=0.0)
    _copy_float(payload, out, "stop_grace_seconds", path, issues, minimum=0.0)
    _copy_float(payload, out, "run_timeout_seconds", path, issues, minimum=0.0)
    return out


def _validate_backend(
    payload: dict[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["backend"])
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    if "rails_env" in payload:
        parsed = _as_str(payload["rails_env"], _join(path, "rails_env"), issues)
        if parsed is not None:
            out["rails_env"] = parsed
    for key in ("server_command", "reset_command", "fixtures_command"):
        if key in payload:
            argv = _as_argv(payload[key], _join(path, key), issues)
            if argv is not None:
                out[key] = argv
    return out


def _validate_cluster(
    payload: dict[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["cluster"])
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    for key in ("setup_command", "migrate_command", "run_command"):
        if key in payload:
            argv = _as_argv(payload[key], _join(path, key), issues)
            if argv is not None:
                out[key] = argv
    if "stale_log_glob" in payload:
        parsed = _as_str(payload["stale_log_glob"], _join(path, "stale_log_glob"), issues)
        if parsed is not None:
            if "/" in parsed or ".." in parsed:
                issues.add(_join(path, "stale_log_glob"), "must be a file-name pattern")
            else:
                out["stale_log_glob"] = parsed
    return out


def _validate_observability(
    payload: dict[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["observability"])
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    if "log_level" in payload:
        raw = payload["log_level"]
        candidate = raw.upper() if isinstance(raw, str) else raw
        parsed = _as_enum(candidate, _join(path, "log_level"), issues, allowed_values=LOG_LEVELS)
        if parsed is not None:
            out["log_level"] = parsed
    if "log_dir" in payload:
        parsed_dir = _as_path_text(payload["log_dir"], _join(path, "log_dir"), issues)
        if parsed_dir is not None:
            out["log_dir"] = parsed_dir
    for key in ("log_to_stdout", "redact_secrets"):
        if key in payload:
            flag = _as_bool(payload[key], _join(path, key), issues)
            if flag is not None:
                out[key] = flag
    return out


def _copy_float(
    payload: Mapping[str, object],
    out: dict[str, Any],
    key: str,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float,
) -> None:
    if key not in payload:
        return
    parsed = _as_float(payload[key], _join(path, key), issues, minimum=minimum)
    if parsed is not None:
        out[key] = parsed


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_env_name(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if not _ENV_NAME_PATTERN.fullmatch(parsed):
        issues.add(path, "must be an env var name (example: RUN_EXCHANGE_INTEGRATION)")
        return None
    return parsed


def _as_argv(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if isinstance(value, str) or not isinstance(value, Sequence):
        issues.add(path, f"expected array of strings, got {type(value).__name__}")
        return None
    argv: list[str] = []
    for index, item in enumerate(value):
        parsed = _as_str(item, f"{path}[{index}]", issues)
        if parsed is None:
            return None
        argv.append(parsed)
    if not argv:
        issues.add(path, "must not be empty")
        return None
    return argv


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(
                key_path,
                "embedded secret values are forbidden; export credentials in the environment",
            )
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_env"):
        return False
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = _deep_copy_value(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(value):
        out[key] = _deep_copy_value(value[key])
    return out


def _deep_copy_value(value: object) -> Any:
    if isinstance(value, Mapping):
        out: dict[str, Any] = {}
        for key, item in value.items():
            if isinstance(key, str):
                out[key] = _deep_copy_value(item)
        return out
    if isinstance(value, list):
        return [_deep_copy_value(item) for item in value]
    if isinstance(value, tuple):
        return tuple(_deep_copy_value(item) for item in value)
    return copy.deepcopy(value)


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            item = value[key]
            if _looks_sensitive_key(key):
                out[key] = "<redacted>"
            else:
                out[key] = _redact_value(item, key)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


__all__ = [
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "HarnessConfigPayload",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
