"""Verification programs: integration post tests and the unit suite."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from ingest_harness.supervisor.commands import (
    CommandResult,
    TemplateError,
    render_argv,
    run_command,
)

if TYPE_CHECKING:
    from ingest_harness.config.settings import HarnessConfig
    from ingest_harness.supervisor.builder import CommandRunner


class PostTestRunner:
    """Runs ``go test <file>`` style verification programs.

    Post tests run in ``<exchange_root>/<integration_dir>`` (or another
    directory below ``exchange_root``) with the integration flag variable set to
    ``true``. Output of every program is kept in ``<log_dir>/<stem>.test.log``.
    """

    def __init__(
        self,
        *,
        exchange_root: Path,
        log_dir: Path,
        command: Sequence[str],
        integration_dir: str,
        integration_env_var: str,
        unit_command: Sequence[str],
        clear_cache_command: Sequence[str],
        environment: Mapping[str, str] | None = None,
        timeout_seconds: float | None = None,
        verbose: bool = False,
        runner: CommandRunner = run_command,
        logger: Any | None = None,
    ) -> None:
        self._exchange_root = Path(exchange_root)
        self._log_dir = Path(log_dir)
        self._command = tuple(command)
        self._integration_dir = integration_dir
        self._integration_env_var = integration_env_var
        self._unit_command = tuple(unit_command)
        self._clear_cache_command = tuple(clear_cache_command)
        self._environment = dict(environment or {})
        self._timeout_seconds = timeout_seconds
        self._verbose = verbose
        self._runner = runner
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @classmethod
    def from_config(
        cls,
        config: HarnessConfig,
        *,
        verbose: bool = False,
        runner: CommandRunner = run_command,
        logger: Any | None = None,
    ) -> PostTestRunner:
        tests = config.verification
        return cls(
            exchange_root=config.paths.exchange_root,
            log_dir=config.paths.log_dir,
            command=tests.command,
            integration_dir=tests.integration_dir,
            integration_env_var=tests.integration_env_var,
            unit_command=tests.unit_command,
            clear_cache_command=tests.clear_cache_command,
            environment=config.process_environment(),
            timeout_seconds=tests.timeout_seconds,
            verbose=verbose,
            runner=runner,
            logger=logger,
        )

    def run_post_test(self, test_file: str, *, directory: str | None = None) -> bool:
        """Run one integration test file; ``True`` when it exits 0."""
        cwd = self._exchange_root / (directory if directory is not None else self._integration_dir)
        try:
            argv = render_argv(self._command, {"file": test_file})
        except TemplateError as exc:
            self._logger.error("post_test_invalid", test_file=test_file, error=str(exc))
            return False
        env = {**self._environment, self._integration_env_var: "true"}
        result = self._runner(argv, cwd=cwd, env=env, timeout_seconds=self._timeout_seconds)
        return self._finish(Path(test_file).stem, result)

    def run_unit_tests(self) -> bool:
        result = self._runner(
            self._unit_command,
            cwd=self._exchange_root,
            env=self._environment,
            timeout_seconds=self._timeout_seconds,
        )
        return self._finish("unit_tests", result)

    def clear_test_cache(self) -> bool:
        """Force the next run to re-execute cached tests. Failure is logged only."""
        if not self._clear_cache_command:
            return True
        result = self._runner(
            self._clear_cache_command,
            cwd=self._exchange_root,
            env=self._environment,
            timeout_seconds=self._timeout_seconds,
        )
        if not result.succeeded:
            self._logger.warning("test_cache_clear_failed", reason=result.describe_failure())
        return result.succeeded

    def _finish(self, label: str, result: CommandResult) -> bool:
        output_path = self._log_dir / f"{label}.test.log"
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(result.stdout + result.stderr, encoding="utf-8")
        except OSError as exc:
            self._logger.warning("test_output_unwritable", path=output_path, error=str(exc))

        if result.succeeded:
            self._logger.info(
                "post_test_passed",
                test=label,
                duration_ms=result.duration_ms,
                output=result.output_tail() if self._verbose else None,
            )
        else:
            self._logger.warning(
                "post_test_failed",
                test=label,
                reason=result.describe_failure(),
                output=result.output_tail(),
            )
        return result.succeeded


__all__ = ["PostTestRunner"]
