"""Typed, frozen view over a validated config mapping.

``HarnessConfig`` is built once per run and handed to the supervisor and the
engine; nothing downstream re-reads the environment or the TOML payload.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ingest_harness.config.loader import load_config


@dataclass(frozen=True, slots=True)
class PathSettings:
    exchange_root: Path
    pharos_root: Path
    dpn_server_root: Path
    work_root: Path
    log_dir: Path
    bin_dir: Path
    staging_dir: Path
    restore_dir: Path
    nsq_data_dir: Path
    worker_config: Path
    nsq_config: Path
    catalog: Path | None = None

    def scratch_dirs(self) -> tuple[Path, ...]:
        """Directories created and emptied before every run."""
        return (self.log_dir, self.bin_dir, self.staging_dir, self.restore_dir, self.nsq_data_dir)


@dataclass(frozen=True, slots=True)
class BuildSettings:
    command: tuple[str, ...]
    source_dir: str
    timeout_seconds: float


@dataclass(frozen=True, slots=True)
class VerificationSettings:
    command: tuple[str, ...]
    integration_dir: str
    integration_env_var: str
    unit_command: tuple[str, ...]
    clear_cache_command: tuple[str, ...]
    timeout_seconds: float


@dataclass(frozen=True, slots=True)
class TimingSettings:
    time_scale: float = 1.0
    poll_interval_seconds: float = 5.0
    readiness_timeout_seconds: float = 120.0
    stop_grace_seconds: float = 5.0
    run_timeout_seconds: float = 0.0

    def scaled(self, seconds: float) -> float:
        return max(0.0, float(seconds) * self.time_scale)

    @property
    def run_timeout(self) -> float | None:
        return self.run_timeout_seconds if self.run_timeout_seconds > 0 else None


@dataclass(frozen=True, slots=True)
class BackendSettings:
    rails_env: str
    server_command: tuple[str, ...]
    reset_command: tuple[str, ...]
    fixtures_command: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ClusterSettings:
    setup_command: tuple[str, ...]
    migrate_command: tuple[str, ...]
    run_command: tuple[str, ...]
    stale_log_glob: str


@dataclass(frozen=True, slots=True)
class ObservabilitySettings:
    log_level: str
    log_dir: Path
    log_to_stdout: bool
    redact_secrets: bool


@dataclass(frozen=True, slots=True)
class HarnessConfig:
    """Explicit configuration struct for one harness run."""

    schema_version: int
    paths: PathSettings
    build: BuildSettings
    verification: VerificationSettings
    timing: TimingSettings
    backend: BackendSettings
    cluster: ClusterSettings
    observability: ObservabilitySettings
    environment: tuple[tuple[str, str], ...] = ()

    @classmethod
    def from_mapping(
        cls,
        payload: Mapping[str, Any],
        *,
        host_environ: Mapping[str, str] | None = None,
    ) -> HarnessConfig:
        paths_raw = payload["paths"]
        catalog_raw = paths_raw.get("catalog") or ""
        paths = PathSettings(
            exchange_root=Path(paths_raw["exchange_root"]),
            pharos_root=Path(paths_raw["pharos_root"]),
            dpn_server_root=Path(paths_raw["dpn_server_root"]),
            work_root=Path(paths_raw["work_root"]),
            log_dir=Path(paths_raw["log_dir"]),
            bin_dir=Path(paths_raw["bin_dir"]),
            staging_dir=Path(paths_raw["staging_dir"]),
            restore_dir=Path(paths_raw["restore_dir"]),
            nsq_data_dir=Path(paths_raw["nsq_data_dir"]),
            worker_config=Path(paths_raw["worker_config"]),
            nsq_config=Path(paths_raw["nsq_config"]),
            catalog=Path(catalog_raw) if catalog_raw else None,
        )
        build_raw = payload["build"]
        tests_raw = payload["tests"]
        timing_raw = payload["timing"]
        backend_raw = payload["backend"]
        cluster_raw = payload["cluster"]
        obs_raw = payload["observability"]

        backend = BackendSettings(
            rails_env=str(backend_raw["rails_env"]),
            server_command=tuple(backend_raw["server_command"]),
            reset_command=tuple(backend_raw["reset_command"]),
            fixtures_command=tuple(backend_raw["fixtures_command"]),
        )
        environment = _enumerate_environment(
            dict(os.environ if host_environ is None else host_environ),
            backend=backend,
            pharos_root=paths.pharos_root,
        )
        return cls(
            schema_version=int(payload["meta"]["schema_version"]),
            paths=paths,
            build=BuildSettings(
                command=tuple(build_raw["command"]),
                source_dir=str(build_raw["source_dir"]),
                timeout_seconds=float(build_raw["timeout_seconds"]),
            ),
            verification=VerificationSettings(
                command=tuple(tests_raw["command"]),
                integration_dir=str(tests_raw["integration_dir"]),
                integration_env_var=str(tests_raw["integration_env_var"]),
                unit_command=tuple(tests_raw["unit_command"]),
                clear_cache_command=tuple(tests_raw["clear_cache_command"]),
                timeout_seconds=float(tests_raw["timeout_seconds"]),
            ),
            timing=TimingSettings(
                time_scale=float(timing_raw["time_scale"]),
                poll_interval_seconds=float(timing_raw["poll_interval_seconds"]),
                readiness_timeout_seconds=float(timing_raw["readiness_timeout_seconds"]),
                stop_grace_seconds=float(timing_raw["stop_grace_seconds"]),
                run_timeout_seconds=float(timing_raw["run_timeout_seconds"]),
            ),
            backend=backend,
            cluster=ClusterSettings(
                setup_command=tuple(cluster_raw["setup_command"]),
                migrate_command=tuple(cluster_raw["migrate_command"]),
                run_command=tuple(cluster_raw["run_command"]),
                stale_log_glob=str(cluster_raw["stale_log_glob"]),
            ),
            observability=ObservabilitySettings(
                log_level=str(obs_raw["log_level"]),
                log_dir=Path(obs_raw["log_dir"]),
                log_to_stdout=bool(obs_raw["log_to_stdout"]),
                redact_secrets=bool(obs_raw["redact_secrets"]),
            ),
            environment=tuple(sorted(environment.items())),
        )

    @classmethod
    def load(
        cls,
        config_path: str | Path | None = None,
        *,
        cli_overrides: Mapping[str, object] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> HarnessConfig:
        payload = load_config(config_path, cli_overrides=cli_overrides, environ=environ)
        return cls.from_mapping(payload, host_environ=environ)

    def process_environment(self) -> dict[str, str]:
        """Environment handed to every spawned child process."""
        return dict(self.environment)

    def template_vars(self) -> dict[str, str]:
        """Placeholders available to component commands and working directories."""
        paths = self.paths
        return {
            "exchange_root": paths.exchange_root.as_posix(),
            "pharos_root": paths.pharos_root.as_posix(),
            "dpn_server_root": paths.dpn_server_root.as_posix(),
            "work_root": paths.work_root.as_posix(),
            "log_dir": paths.log_dir.as_posix(),
            "bin_dir": paths.bin_dir.as_posix(),
            "staging_dir": paths.staging_dir.as_posix(),
            "restore_dir": paths.restore_dir.as_posix(),
            "nsq_data_dir": paths.nsq_data_dir.as_posix(),
            "worker_config": paths.worker_config.as_posix(),
            "nsq_config": paths.nsq_config.as_posix(),
        }


def _enumerate_environment(
    host: dict[str, str],
    *,
    backend: BackendSettings,
    pharos_root: Path,
) -> dict[str, str]:
    env = dict(host)
    env["RAILS_ENV"] = backend.rails_env
    ruby_version_file = pharos_root / ".ruby-version"
    try:
        ruby_version = ruby_version_file.read_text(encoding="utf-8").strip()
    except OSError:
        ruby_version = ""
    if ruby_version:
        env["RBENV_VERSION"] = ruby_version
    return env


__all__ = [
    "BackendSettings",
    "BuildSettings",
    "ClusterSettings",
    "HarnessConfig",
    "ObservabilitySettings",
    "PathSettings",
    "TimingSettings",
    "VerificationSettings",
]
