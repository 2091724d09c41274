"""Blocking command execution and argv template rendering."""

from __future__ import annotations

import subprocess
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

_OUTPUT_TAIL_CHARS = 4000


class TemplateError(ValueError):
    """Raised when an argv template references an unknown placeholder."""


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized result of one blocking command."""

    command: tuple[str, ...]
    cwd: Path | None
    returncode: int | None
    stdout: str
    stderr: str
    timed_out: bool
    duration_ms: float
    spawn_error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.spawn_error is None and not self.timed_out and self.returncode == 0

    def output_tail(self, limit: int = _OUTPUT_TAIL_CHARS) -> str:
        combined = "\n".join(part for part in (self.stdout, self.stderr) if part)
        return combined[-limit:]

    def describe_failure(self) -> str:
        if self.spawn_error is not None:
            return self.spawn_error
        if self.timed_out:
            return f"timed out after {self.duration_ms / 1000.0:.1f}s"
        return f"exited with status {self.returncode}"


def render_argv(template: Sequence[str], variables: Mapping[str, str]) -> tuple[str, ...]:
    """Render each argv element with ``str.format`` placeholders."""
    rendered: list[str] = []
    for part in template:
        rendered.append(render_text(part, variables))
    return tuple(rendered)


def render_text(template: str, variables: Mapping[str, str]) -> str:
    try:
        return template.format_map(dict(variables))
    except KeyError as exc:
        raise TemplateError(f"unknown placeholder {exc.args[0]!r} in {template!r}") from exc
    except (IndexError, ValueError) as exc:
        raise TemplateError(f"invalid template {template!r}: {exc}") from exc


def run_command(
    command: Sequence[str],
    *,
    cwd: Path | str | None = None,
    env: Mapping[str, str] | None = None,
    timeout_seconds: float | None = None,
) -> CommandResult:
    """Run ``command`` to completion, capturing output; never raises for process failures."""

    argv = tuple(command)
    resolved_cwd = Path(cwd) if cwd is not None else None
    started = time.perf_counter()
    try:
        completed = subprocess.run(
            list(argv),
            cwd=resolved_cwd,
            env=dict(env) if env is not None else None,
            check=False,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
        )
    except subprocess.TimeoutExpired as exc:
        return CommandResult(
            command=argv,
            cwd=resolved_cwd,
            returncode=None,
            stdout=_coerce_stream(exc.stdout),
            stderr=_coerce_stream(exc.stderr),
            timed_out=True,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
    except OSError as exc:
        return CommandResult(
            command=argv,
            cwd=resolved_cwd,
            returncode=None,
            stdout="",
            stderr="",
            timed_out=False,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            spawn_error=f"{type(exc).__name__}: {exc}",
        )

    return CommandResult(
        command=argv,
        cwd=resolved_cwd,
        returncode=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
        timed_out=False,
        duration_ms=(time.perf_counter() - started) * 1000.0,
    )


def _coerce_stream(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


__all__ = ["CommandResult", "TemplateError", "render_argv", "render_text", "run_command"]
