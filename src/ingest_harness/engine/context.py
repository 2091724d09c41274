"""Per-stage execution context handed to actions and checks."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from ingest_harness.config.settings import TimingSettings
from ingest_harness.errors import BackendError

if TYPE_CHECKING:
    from ingest_harness.engine.checks import PostTestRunner
    from ingest_harness.readiness.watcher import ReadinessWatcher
    from ingest_harness.supervisor.backend import RestBackend
    from ingest_harness.supervisor.cluster import ReplicationCluster
    from ingest_harness.supervisor.process_supervisor import ProcessSupervisor


@dataclass(slots=True)
class StageContext:
    """Collaborators a stage step may touch.

    ``start`` raises :class:`~ingest_harness.errors.StartError` so that a failed
    start aborts the stage; ``wait_for`` reports a timeout as ``False``.
    """

    stage: str
    supervisor: ProcessSupervisor
    watcher: ReadinessWatcher
    post_tests: PostTestRunner
    log_dir: Path
    timing: TimingSettings = field(default_factory=TimingSettings)
    backend: RestBackend | None = None
    cluster: ReplicationCluster | None = None
    sleep: Callable[[float], None] = time.sleep
    logger: Any = field(default_factory=lambda: structlog.get_logger(__name__))

    def start(self, component: str) -> None:
        if self.cluster is not None and component == self.cluster.name:
            self.cluster.start()
            return
        result = self.supervisor.start(component)
        if result.error is not None:
            raise result.error

    def pause(self, seconds: float) -> None:
        """Fixed settle pause, scaled by ``timing.time_scale``."""
        scaled = self.timing.scaled(seconds)
        if scaled > 0:
            self.logger.debug("stage_pause", stage=self.stage, seconds=scaled)
            self.sleep(scaled)

    def wait_for(self, source: str | Path, pattern: str, *, timeout: float | None = None) -> bool:
        """Wait for ``pattern`` in ``source``; relative sources live under ``log_dir``."""
        path = Path(source)
        if not path.is_absolute():
            path = self.log_dir / path
        return self.watcher.wait_for_pattern(
            path,
            pattern,
            timeout=self.timing.readiness_timeout_seconds if timeout is None else timeout,
            poll_interval=self.timing.poll_interval_seconds,
        )

    def require_backend(self) -> RestBackend:
        if self.backend is None:
            raise BackendError("no REST backend is configured for this run")
        return self.backend

    def require_cluster(self) -> ReplicationCluster:
        if self.cluster is None:
            raise BackendError("no replication cluster is configured for this run")
        return self.cluster


__all__ = ["StageContext"]
