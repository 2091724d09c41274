"""Unit tests for harness config schema validation."""

from __future__ import annotations

import pytest

from ingest_harness.config.schema import (
    ConfigValidationError,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)


def test_defaults_are_valid() -> None:
    result = validate_config(default_config())

    assert result.is_valid
    assert result.config is not None
    assert result.config["timing"]["time_scale"] == 1.0


def test_default_config_returns_independent_copies() -> None:
    first = default_config()
    first["timing"]["time_scale"] = 0.0

    assert default_config()["timing"]["time_scale"] == 1.0


def test_merge_config_is_deep_and_leaves_inputs_untouched() -> None:
    base = default_config()
    merged = merge_config(base, {"timing": {"time_scale": 0.5}})

    assert merged["timing"]["time_scale"] == 0.5
    assert merged["timing"]["poll_interval_seconds"] == 5.0
    assert base["timing"]["time_scale"] == 1.0


def test_issues_carry_dotted_paths() -> None:
    payload = merge_config(
        default_config(),
        {"timing": {"poll_interval_seconds": 0}, "observability": {"log_level": "LOUD"}},
    )

    result = validate_config(payload)

    assert not result.is_valid
    paths = {issue.path for issue in result.issues}
    assert "timing.poll_interval_seconds" in paths
    assert "observability.log_level" in paths


def test_build_command_must_reference_output_placeholder() -> None:
    payload = merge_config(default_config(), {"build": {"command": ["go", "build"]}})

    with pytest.raises(ConfigValidationError, match="build.command"):
        assert_valid_config(payload)


def test_test_command_must_reference_file_placeholder() -> None:
    payload = merge_config(default_config(), {"tests": {"command": ["go", "test"]}})

    with pytest.raises(ConfigValidationError, match="tests.command"):
        assert_valid_config(payload)


def test_embedded_secret_keys_are_rejected() -> None:
    payload = merge_config(default_config(), {"backend": {"api_token": "abc"}})

    result = validate_config(payload)

    assert not result.is_valid
    assert any("embedded secret" in issue.message for issue in result.issues)


def test_stale_log_glob_must_be_a_file_pattern() -> None:
    payload = merge_config(default_config(), {"cluster": {"stale_log_glob": "../*"}})

    with pytest.raises(ConfigValidationError, match="cluster.stale_log_glob"):
        assert_valid_config(payload)


def test_schema_version_mismatch_reports_guidance() -> None:
    payload = merge_config(default_config(), {"meta": {"schema_version": 99}})

    result = validate_config(payload)

    assert not result.is_valid
    assert result.issues[0].message == migration_guidance(99)
    assert "newer" in migration_guidance(99)
    assert "older" in migration_guidance(0)


def test_redact_config_masks_sensitive_keys() -> None:
    redacted = redact_config({"backend": {"password": "x", "rails_env": "integration"}})

    assert redacted == {"backend": {"password": "<redacted>", "rails_env": "integration"}}
