"""Replication cluster: the Special component with a multi-phase bring-up."""

from __future__ import annotations

import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from ingest_harness.errors import BackendError, StartError
from ingest_harness.supervisor.process_supervisor import terminate_process_group

if TYPE_CHECKING:
    from ingest_harness.config.settings import HarnessConfig
    from ingest_harness.supervisor.process_supervisor import ProcessSupervisor

DEFAULT_CLUSTER_NAME = "dpn_cluster"


class ReplicationCluster:
    """Owns the local replication cluster process.

    ``initialize`` runs the one-time setup and migration scripts. ``start``
    removes stale node logs and spawns the cluster runner; ``stop`` is
    best-effort and safe to call repeatedly.
    """

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        *,
        root: Path,
        setup_command: Sequence[str],
        migrate_command: Sequence[str],
        run_command: Sequence[str],
        stale_log_glob: str,
        log_dir: Path,
        grace_seconds: float,
        name: str = DEFAULT_CLUSTER_NAME,
        initialize_on_start: bool = False,
        timeout_seconds: float | None = None,
        logger: Any | None = None,
    ) -> None:
        self._supervisor = supervisor
        self._root = Path(root)
        self._setup_command = tuple(setup_command)
        self._migrate_command = tuple(migrate_command)
        self._run_command = tuple(run_command)
        self._stale_log_glob = stale_log_glob
        self._log_dir = Path(log_dir)
        self._grace_seconds = grace_seconds
        self._name = name
        self._initialize_on_start = initialize_on_start
        self._timeout_seconds = timeout_seconds
        self._initialized = False
        self._process: subprocess.Popen[bytes] | None = None
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @classmethod
    def from_config(
        cls,
        supervisor: ProcessSupervisor,
        config: HarnessConfig,
        *,
        initialize_on_start: bool = False,
        logger: Any | None = None,
    ) -> ReplicationCluster:
        return cls(
            supervisor,
            root=config.paths.dpn_server_root,
            setup_command=config.cluster.setup_command,
            migrate_command=config.cluster.migrate_command,
            run_command=config.cluster.run_command,
            stale_log_glob=config.cluster.stale_log_glob,
            log_dir=config.paths.log_dir,
            grace_seconds=config.timing.stop_grace_seconds,
            initialize_on_start=initialize_on_start,
            timeout_seconds=config.verification.timeout_seconds,
            logger=logger,
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def initialize(self) -> None:
        for phase, argv in (("setup", self._setup_command), ("migrate", self._migrate_command)):
            self._logger.info("cluster_phase_started", component=self._name, phase=phase)
            result = self._supervisor.run_command(
                argv, cwd=self._root, timeout_seconds=self._timeout_seconds
            )
            if not result.succeeded:
                raise BackendError(
                    f"cluster {phase} failed: {result.describe_failure()}\n{result.output_tail()}"
                )
        self._initialized = True

    def start(self) -> None:
        if self.is_running():
            return
        if self._initialize_on_start and not self._initialized:
            self.initialize()

        removed = self._remove_stale_logs()
        log_path = self._log_dir / f"{self._name}.log"
        try:
            self._process = self._supervisor.spawn(
                self._run_command,
                cwd=self._root,
                env=self._supervisor.config.environment,
                log_path=log_path,
            )
        except OSError as exc:
            raise StartError(self._name, f"{type(exc).__name__}: {exc}") from exc
        self._logger.info(
            "component_started",
            component=self._name,
            lifecycle="special",
            pid=self._process.pid,
            stale_logs_removed=removed,
        )

    def stop(self) -> None:
        process = self._process
        self._process = None
        if process is None:
            return
        terminate_process_group(
            process.pid,
            popen=process,
            grace_seconds=self._grace_seconds,
            component=self._name,
            logger=self._logger,
        )
        self._logger.info("component_stopped", component=self._name, pid=process.pid)

    def _remove_stale_logs(self) -> int:
        if not self._stale_log_glob or not self._root.is_dir():
            return 0
        removed = 0
        for path in sorted(self._root.glob(self._stale_log_glob)):
            if path.is_file():
                path.unlink(missing_ok=True)
                removed += 1
        return removed


__all__ = ["DEFAULT_CLUSTER_NAME", "ReplicationCluster"]
