"""Unit tests for the typed ``HarnessConfig`` view."""

from __future__ import annotations

from pathlib import Path

import pytest

from ingest_harness.config.settings import HarnessConfig, TimingSettings


def _load(tmp_path: Path, text: str = "", environ: dict[str, str] | None = None) -> HarnessConfig:
    config_path = tmp_path / "harness.toml"
    config_path.write_text(text, encoding="utf-8")
    return HarnessConfig.load(config_path, environ=environ if environ is not None else {})


def test_process_environment_adds_rails_env_and_keeps_host_values(tmp_path: Path) -> None:
    config = _load(tmp_path, environ={"PATH": "/usr/bin", "AWS_REGION": "us-east-1"})

    env = config.process_environment()

    assert env["PATH"] == "/usr/bin"
    assert env["AWS_REGION"] == "us-east-1"
    assert env["RAILS_ENV"] == "integration"
    assert "RBENV_VERSION" not in env


def test_ruby_version_file_sets_rbenv_version(tmp_path: Path) -> None:
    pharos = tmp_path / "pharos"
    pharos.mkdir()
    (pharos / ".ruby-version").write_text("2.3.1\n", encoding="utf-8")

    config = _load(tmp_path)

    assert config.process_environment()["RBENV_VERSION"] == "2.3.1"


def test_process_environment_returns_a_fresh_copy(tmp_path: Path) -> None:
    config = _load(tmp_path)

    env = config.process_environment()
    env["RAILS_ENV"] = "production"

    assert config.process_environment()["RAILS_ENV"] == "integration"


def test_paths_and_template_vars_are_normalized(tmp_path: Path) -> None:
    config = _load(tmp_path, '[paths]\nbin_dir = "out/bin"\ncatalog = "stages.yaml"\n')
    root = tmp_path.resolve()

    assert config.paths.bin_dir == root / "out" / "bin"
    assert config.paths.catalog == root / "stages.yaml"
    variables = config.template_vars()
    assert variables["bin_dir"] == (root / "out" / "bin").as_posix()
    assert variables["worker_config"].endswith("exchange/config/integration.json")


def test_empty_catalog_path_means_packaged_catalog(tmp_path: Path) -> None:
    assert _load(tmp_path).paths.catalog is None


def test_scratch_dirs_cover_every_per_run_directory(tmp_path: Path) -> None:
    paths = _load(tmp_path).paths

    assert paths.scratch_dirs() == (
        paths.log_dir,
        paths.bin_dir,
        paths.staging_dir,
        paths.restore_dir,
        paths.nsq_data_dir,
    )


def test_commands_become_tuples(tmp_path: Path) -> None:
    config = _load(tmp_path)

    assert config.build.command == ("go", "build", "-o", "{output}", "{name}.go")
    assert config.verification.clear_cache_command == ("go", "clean", "-testcache")
    assert config.backend.server_command[0] == "rbenv"


@pytest.mark.parametrize(
    ("scale", "seconds", "expected"),
    [(1.0, 5.0, 5.0), (0.0, 5.0, 0.0), (0.5, 10.0, 5.0), (2.0, -1.0, 0.0)],
)
def test_time_scale_applies_to_settle_pauses(scale: float, seconds: float, expected: float) -> None:
    assert TimingSettings(time_scale=scale).scaled(seconds) == expected


def test_run_timeout_zero_means_no_deadline() -> None:
    assert TimingSettings().run_timeout is None
    assert TimingSettings(run_timeout_seconds=30.0).run_timeout == 30.0
