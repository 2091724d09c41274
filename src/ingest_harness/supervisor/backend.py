"""Out-of-band operations on the REST backend (state reset, fixture load)."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from ingest_harness.errors import BackendError

if TYPE_CHECKING:
    from ingest_harness.config.settings import HarnessConfig
    from ingest_harness.supervisor.process_supervisor import ProcessSupervisor


class RestBackend:
    """Blocking administrative commands run in the backend's source root.

    Starting and stopping the backend server itself is ordinary supervisor work;
    only these two operations live outside the generic lifecycle.
    """

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        *,
        root: Path,
        reset_command: Sequence[str],
        fixtures_command: Sequence[str],
        timeout_seconds: float | None = None,
        logger: Any | None = None,
    ) -> None:
        self._supervisor = supervisor
        self._root = Path(root)
        self._reset_command = tuple(reset_command)
        self._fixtures_command = tuple(fixtures_command)
        self._timeout_seconds = timeout_seconds
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @classmethod
    def from_config(
        cls, supervisor: ProcessSupervisor, config: HarnessConfig, *, logger: Any | None = None
    ) -> RestBackend:
        return cls(
            supervisor,
            root=config.paths.pharos_root,
            reset_command=config.backend.reset_command,
            fixtures_command=config.backend.fixtures_command,
            timeout_seconds=config.verification.timeout_seconds,
            logger=logger,
        )

    def reset_state(self) -> None:
        self._run("reset_state", self._reset_command)

    def load_fixtures(self) -> None:
        self._run("load_fixtures", self._fixtures_command)

    def _run(self, operation: str, argv: tuple[str, ...]) -> None:
        self._logger.info("backend_operation_started", operation=operation, command=list(argv))
        result = self._supervisor.run_command(
            argv, cwd=self._root, timeout_seconds=self._timeout_seconds
        )
        if not result.succeeded:
            self._logger.warning(
                "backend_operation_failed",
                operation=operation,
                reason=result.describe_failure(),
                output=result.output_tail(),
            )
            raise BackendError(f"backend {operation} failed: {result.describe_failure()}")
        self._logger.info(
            "backend_operation_finished", operation=operation, duration_ms=result.duration_ms
        )


__all__ = ["RestBackend"]
