"""Process lifecycle supervisor for Service and Application components.

Service components are spawned into their own session and left running until
``stop``/``stop_all``; Application components are spawned and waited on. Special
components are refused here and handled by registered :class:`SpecialHandler`
objects, which ``stop_all`` tears down after workers and before shared
infrastructure.
"""

from __future__ import annotations

import os
import signal
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import psutil
import structlog

from ingest_harness.constants import DEFAULT_STOP_GRACE_SECONDS
from ingest_harness.domain.components import Component, ComponentRegistry, ComponentRole
from ingest_harness.errors import (
    BuildError,
    InvalidOperationError,
    StartError,
    StopError,
)
from ingest_harness.supervisor.builder import BuildArtifact, BuildCollaborator
from ingest_harness.supervisor.commands import (
    CommandResult,
    TemplateError,
    render_argv,
    render_text,
    run_command,
)
from ingest_harness.supervisor.process_table import ProcessHandle, RunningProcessTable

if TYPE_CHECKING:
    from ingest_harness.config.settings import HarnessConfig

_SHUTDOWN_TIERS: tuple[ComponentRole, ...] = (ComponentRole.BROKER, ComponentRole.BACKEND)


class SpecialHandler(Protocol):
    """Bespoke lifecycle owner for a Special component."""

    @property
    def name(self) -> str: ...

    def stop(self) -> None: ...


@dataclass(frozen=True, slots=True)
class SupervisorConfig:
    """Explicit inputs the supervisor needs; enumerated once per run."""

    bin_dir: Path
    log_dir: Path
    environment: Mapping[str, str] = field(default_factory=dict)
    template_vars: Mapping[str, str] = field(default_factory=dict)
    stop_grace_seconds: float = DEFAULT_STOP_GRACE_SECONDS
    application_timeout_seconds: float | None = None

    @classmethod
    def from_harness_config(cls, config: HarnessConfig) -> SupervisorConfig:
        return cls(
            bin_dir=config.paths.bin_dir,
            log_dir=config.paths.log_dir,
            environment=config.process_environment(),
            template_vars=config.template_vars(),
            stop_grace_seconds=config.timing.stop_grace_seconds,
            application_timeout_seconds=config.verification.timeout_seconds,
        )


@dataclass(frozen=True, slots=True)
class StartResult:
    """Outcome of :meth:`ProcessSupervisor.start`."""

    component: str
    pid: int | None = None
    already_running: bool = False
    exit_code: int | None = None
    error: StartError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ProcessSupervisor:
    """Starts, tracks and stops component processes by name."""

    def __init__(
        self,
        registry: ComponentRegistry,
        builder: BuildCollaborator,
        config: SupervisorConfig,
        *,
        logger: Any | None = None,
    ) -> None:
        self._registry = registry
        self._builder = builder
        self._config = config
        self._table = RunningProcessTable(item.name for item in registry.supervised())
        self._special_handlers: dict[str, SpecialHandler] = {}
        self._artifacts: dict[str, BuildArtifact] = {}
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def registry(self) -> ComponentRegistry:
        return self._registry

    @property
    def table(self) -> RunningProcessTable:
        return self._table

    @property
    def config(self) -> SupervisorConfig:
        return self._config

    def register_special_handler(self, handler: SpecialHandler) -> None:
        component = self._registry.get(handler.name)
        if not component.is_special:
            raise InvalidOperationError(
                f"{component.name} is a {component.lifecycle_kind} component, not special"
            )
        self._special_handlers[component.name] = handler

    # ------------------------------------------------------------------ build

    def build(self, name: str) -> BuildArtifact | BuildError:
        """Compile ``name`` once per run; later calls reuse the artifact."""
        component = self._registry.get(name)
        cached = self._artifacts.get(component.name)
        if cached is not None:
            self._logger.debug("build_reused", component=component.name)
            return cached
        result = self._builder.build(component)
        if isinstance(result, BuildArtifact):
            self._artifacts[component.name] = result
        return result

    # ------------------------------------------------------------ start/stop

    def start(self, name: str) -> StartResult:
        component = self._require_supervised(name)
        handle = self._table.get(component.name)
        if handle is not None:
            if handle.is_alive():
                return StartResult(component.name, pid=handle.pid, already_running=True)
            self._logger.warning(
                "component_exited", component=component.name, pid=handle.pid, exit_code=handle.poll()
            )
            self._table.clear(component.name)

        try:
            argv, cwd = self._render(component)
        except TemplateError as exc:
            return self._start_failed(component, str(exc))

        env = {**self._config.environment, **component.env_overrides()}
        log_path = self._config.log_dir / (component.log_file or f"{component.name}.stdout.log")
        try:
            popen = self.spawn(argv, cwd=cwd, env=env, log_path=log_path)
        except OSError as exc:
            return self._start_failed(component, f"{type(exc).__name__}: {exc}")

        handle = ProcessHandle(component.name, popen.pid, popen=popen, log_path=log_path)
        self._table.set(component.name, handle)
        self._logger.info(
            "component_started",
            component=component.name,
            lifecycle=str(component.lifecycle_kind),
            pid=popen.pid,
            command=list(argv),
        )

        if component.is_service:
            return StartResult(component.name, pid=popen.pid)
        return self._await_application(component, handle)

    def ensure_running(self, name: str) -> StartResult | None:
        """Start a Service that is not running; ``None`` when it already is.

        Covers both a crashed process and one cleared by an earlier
        ``stop``/``stop_all``.
        """
        component = self._require_supervised(name)
        if not component.is_service:
            return None
        handle = self._table.get(component.name)
        if handle is not None and handle.is_alive():
            return None
        self._logger.warning(
            "service_restarting",
            component=component.name,
            pid=handle.pid if handle is not None else None,
        )
        return self.start(component.name)

    def stop(self, name: str) -> None:
        """Signal ``name`` if tracked; never raises for vanished processes."""
        component = self._require_supervised(name)
        handle = self._table.get(component.name)
        try:
            if handle is None or handle.pid <= 0:
                return
            terminate_process_group(
                handle.pid,
                popen=handle.popen,
                grace_seconds=self._config.stop_grace_seconds,
                component=component.name,
                logger=self._logger,
            )
            self._logger.info("component_stopped", component=component.name, pid=handle.pid)
        finally:
            self._table.clear(component.name)

    def stop_all(self) -> None:
        """Workers (newest first), then special handlers, then broker, then backend."""
        running = self._table.running()
        roles = {name: self._registry.get(name).role for name in running}

        for name in reversed(running):
            if roles[name] is ComponentRole.WORKER:
                self._stop_quietly(name)

        for handler in reversed(tuple(self._special_handlers.values())):
            try:
                handler.stop()
            except Exception as exc:  # noqa: BLE001
                self._logger.warning(
                    "component_stop_failed", component=handler.name, error=StopError(handler.name, str(exc))
                )

        for tier in _SHUTDOWN_TIERS:
            for name in reversed(running):
                if roles[name] is tier:
                    self._stop_quietly(name)

    def is_running(self, name: str) -> bool:
        component = self._registry.get(name)
        if component.is_special:
            return False
        handle = self._table.get(component.name)
        return handle is not None and handle.is_alive()

    # --------------------------------------------------------------- helpers

    def spawn(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None,
        env: Mapping[str, str],
        log_path: Path,
    ) -> subprocess.Popen[bytes]:
        """Spawn ``argv`` in a new session with output appended to ``log_path``."""
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("ab") as log_handle:
            return subprocess.Popen(
                list(argv),
                cwd=cwd,
                env=dict(env),
                stdin=subprocess.DEVNULL,
                stdout=log_handle,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )

    def run_command(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        extra_env: Mapping[str, str] | None = None,
        timeout_seconds: float | None = None,
    ) -> CommandResult:
        """Run a blocking out-of-band command with the supervised environment."""
        env = {**self._config.environment, **(extra_env or {})}
        return run_command(argv, cwd=cwd, env=env, timeout_seconds=timeout_seconds)

    def _require_supervised(self, name: str) -> Component:
        component = self._registry.get(name)
        if component.is_special:
            raise InvalidOperationError(
                f"{component.name} is a special component; use its dedicated handler"
            )
        return component

    def _render(self, component: Component) -> tuple[tuple[str, ...], Path]:
        variables = {**self._config.template_vars, "name": component.name}
        variables.setdefault("bin_dir", self._config.bin_dir.as_posix())
        variables.setdefault("log_dir", self._config.log_dir.as_posix())
        argv = render_argv(component.command_template(), variables)
        cwd = Path(render_text(component.cwd, variables)) if component.cwd else self._config.bin_dir
        return argv, cwd

    def _await_application(self, component: Component, handle: ProcessHandle) -> StartResult:
        assert handle.popen is not None
        timeout = self._config.application_timeout_seconds
        try:
            exit_code = handle.popen.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            terminate_process_group(
                handle.pid,
                popen=handle.popen,
                grace_seconds=self._config.stop_grace_seconds,
                component=component.name,
                logger=self._logger,
            )
            self._table.clear(component.name)
            return self._start_failed(component, f"did not exit within {timeout:.0f}s")

        self._table.clear(component.name)
        self._logger.info("component_exited", component=component.name, exit_code=exit_code)
        if exit_code != 0 and not component.allow_failure:
            error = StartError(component.name, f"exited with status {exit_code}", exit_code=exit_code)
            self._logger.warning("component_start_failed", component=component.name, error=error)
            return StartResult(component.name, pid=handle.pid, exit_code=exit_code, error=error)
        return StartResult(component.name, pid=handle.pid, exit_code=exit_code)

    def _start_failed(self, component: Component, message: str) -> StartResult:
        error = StartError(component.name, message)
        self._logger.warning("component_start_failed", component=component.name, error=error)
        return StartResult(component.name, error=error)

    def _stop_quietly(self, name: str) -> None:
        try:
            self.stop(name)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "component_stop_failed", component=name, error=StopError(name, str(exc))
            )


def terminate_process_group(
    pid: int,
    *,
    popen: subprocess.Popen[bytes] | None,
    grace_seconds: float,
    component: str,
    logger: Any,
) -> None:
    """SIGTERM the process group, escalating to SIGKILL after ``grace_seconds``.

    ``ProcessLookupError`` means the process is already gone and is ignored;
    any other signalling failure is logged as a :class:`StopError`.
    """

    if not _signal_group(pid, signal.SIGTERM, component=component, logger=logger):
        _reap(popen)
        return
    if _wait_for_exit(pid, popen, grace_seconds):
        return
    logger.warning("component_kill_escalated", component=component, pid=pid)
    _signal_group(pid, signal.SIGKILL, component=component, logger=logger)
    _wait_for_exit(pid, popen, grace_seconds)


def _signal_group(pid: int, signum: signal.Signals, *, component: str, logger: Any) -> bool:
    # Spawned with start_new_session, so the group id is the leader's pid and
    # stays valid after the leader itself has been reaped.
    try:
        os.killpg(pid, signum)
    except ProcessLookupError:
        return False
    except OSError as exc:
        logger.warning(
            "component_stop_failed",
            component=component,
            pid=pid,
            error=StopError(component, f"{signum.name}: {exc}"),
        )
        return False
    return True


def _wait_for_exit(pid: int, popen: subprocess.Popen[bytes] | None, timeout: float) -> bool:
    if popen is not None:
        try:
            popen.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return False
        return True
    try:
        psutil.Process(pid).wait(timeout=timeout)
    except psutil.NoSuchProcess:
        return True
    except psutil.TimeoutExpired:
        return False
    return True


def _reap(popen: subprocess.Popen[bytes] | None) -> None:
    if popen is not None:
        popen.poll()


__all__ = [
    "ProcessSupervisor",
    "SpecialHandler",
    "StartResult",
    "SupervisorConfig",
    "terminate_process_group",
]
