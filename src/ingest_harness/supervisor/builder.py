"""Build collaborator: compile one component into the shared bin directory."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from ingest_harness.domain.components import Component
from ingest_harness.errors import BuildError
from ingest_harness.supervisor.commands import (
    CommandResult,
    TemplateError,
    render_argv,
    render_text,
    run_command,
)

if TYPE_CHECKING:
    from ingest_harness.config.settings import HarnessConfig

CommandRunner = Callable[..., CommandResult]


@dataclass(frozen=True, slots=True)
class BuildArtifact:
    """A compiled binary ready for the supervisor to spawn."""

    component: str
    binary_path: Path
    duration_ms: float = 0.0


class BuildCollaborator(Protocol):
    """Anything that turns a component into a binary or a :class:`BuildError`."""

    def build(self, component: Component) -> BuildArtifact | BuildError: ...


class GoBuilder:
    """Runs ``go build -o <bin_dir>/<name> <name>.go`` in the component's source dir."""

    def __init__(
        self,
        *,
        bin_dir: Path,
        command: Sequence[str],
        source_dir: str,
        template_vars: Mapping[str, str] | None = None,
        env: Mapping[str, str] | None = None,
        timeout_seconds: float | None = None,
        runner: CommandRunner = run_command,
        logger: Any | None = None,
    ) -> None:
        if not command:
            raise ValueError("build command must not be empty")
        self._bin_dir = Path(bin_dir)
        self._command = tuple(command)
        self._source_dir = source_dir
        self._template_vars = dict(template_vars or {})
        self._env = dict(env) if env is not None else None
        self._timeout_seconds = timeout_seconds
        self._runner = runner
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @classmethod
    def from_config(
        cls,
        config: HarnessConfig,
        *,
        runner: CommandRunner = run_command,
        logger: Any | None = None,
    ) -> GoBuilder:
        return cls(
            bin_dir=config.paths.bin_dir,
            command=config.build.command,
            source_dir=config.build.source_dir,
            template_vars=config.template_vars(),
            env=config.process_environment(),
            timeout_seconds=config.build.timeout_seconds,
            runner=runner,
            logger=logger,
        )

    def build(self, component: Component) -> BuildArtifact | BuildError:
        if not component.buildable:
            return BuildError(component.name, "component is not buildable")

        output = self._bin_dir / component.name
        variables = {**self._template_vars, "name": component.name, "output": output.as_posix()}
        try:
            source_dir = Path(render_text(component.source_dir or self._source_dir, variables))
            argv = render_argv(self._command, variables)
        except TemplateError as exc:
            return BuildError(component.name, str(exc))

        self._logger.info(
            "build_started", component=component.name, cwd=source_dir, command=list(argv)
        )
        self._bin_dir.mkdir(parents=True, exist_ok=True)
        result = self._runner(
            argv, cwd=source_dir, env=self._env, timeout_seconds=self._timeout_seconds
        )
        if not result.succeeded:
            error = BuildError(
                component.name,
                result.describe_failure(),
                exit_code=result.returncode,
                output=result.output_tail(),
            )
            self._logger.warning(
                "build_failed",
                component=component.name,
                exit_code=result.returncode,
                reason=result.describe_failure(),
                output=error.output,
            )
            return error

        self._logger.info(
            "build_finished", component=component.name, binary=output, duration_ms=result.duration_ms
        )
        return BuildArtifact(
            component=component.name, binary_path=output, duration_ms=result.duration_ms
        )


__all__ = ["BuildArtifact", "BuildCollaborator", "CommandRunner", "GoBuilder"]
