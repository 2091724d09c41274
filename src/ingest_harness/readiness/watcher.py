"""Condition-based synchronization on durable side channels.

A watcher polls a log file (re-read from the beginning on every poll) or a
process until a condition holds or a monotonic deadline passes. Timeouts are
reported as ``False``, never raised.
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import psutil
import structlog

from ingest_harness.constants import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_READINESS_TIMEOUT_SECONDS,
)
from ingest_harness.supervisor.process_table import ProcessHandle

Clock = Callable[[], float]
Sleeper = Callable[[float], None]


@dataclass(frozen=True, slots=True)
class ReadinessCondition:
    """``pattern`` must appear on some line of ``source`` within ``timeout`` seconds."""

    source: Path
    pattern: str
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    timeout: float = DEFAULT_READINESS_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        object.__setattr__(self, "source", Path(self.source))
        if not isinstance(self.pattern, str) or not self.pattern:
            raise ValueError("ReadinessCondition.pattern must be a non-empty string")
        try:
            re.compile(self.pattern)
        except re.error as exc:
            raise ValueError(f"invalid readiness pattern {self.pattern!r}: {exc}") from exc
        if self.poll_interval <= 0:
            raise ValueError("ReadinessCondition.poll_interval must be > 0")
        if self.timeout < 0:
            raise ValueError("ReadinessCondition.timeout must be >= 0")

    def compiled(self) -> re.Pattern[str]:
        return re.compile(self.pattern)


class ReadinessWatcher:
    """Bounded polling loops with an injectable clock and sleep."""

    def __init__(
        self,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleeper = time.sleep,
        logger: Any | None = None,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def wait(self, condition: ReadinessCondition) -> bool:
        return self.wait_for_pattern(
            condition.source,
            condition.pattern,
            timeout=condition.timeout,
            poll_interval=condition.poll_interval,
        )

    def wait_for_pattern(
        self,
        source: Path | str,
        pattern: str,
        *,
        timeout: float = DEFAULT_READINESS_TIMEOUT_SECONDS,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> bool:
        """Return ``True`` once any line of ``source`` matches ``pattern``.

        A missing source counts as "not yet matched".
        """

        path = Path(source)
        compiled = re.compile(pattern)
        matched = self.wait_for_condition(
            lambda: _file_has_match(path, compiled),
            timeout=timeout,
            poll_interval=poll_interval,
            description=f"{path} =~ {pattern}",
        )
        if matched:
            self._logger.info("readiness_matched", source=path, pattern=pattern)
        else:
            self._logger.warning(
                "readiness_timed_out", source=path, pattern=pattern, timeout=timeout
            )
        return matched

    def wait_for_process_exit(
        self,
        target: ProcessHandle | int,
        *,
        timeout: float,
        poll_interval: float = 0.5,
    ) -> bool:
        """Return ``True`` once the process is gone."""

        if isinstance(target, ProcessHandle):
            handle = target

            def exited() -> bool:
                return not handle.is_alive()

            description = f"exit of {handle.component} (pid {handle.pid})"
        else:
            pid = int(target)

            def exited() -> bool:
                return not _pid_alive(pid)

            description = f"exit of pid {pid}"
        return self.wait_for_condition(
            exited, timeout=timeout, poll_interval=poll_interval, description=description
        )

    def wait_for_condition(
        self,
        predicate: Callable[[], bool],
        *,
        timeout: float,
        poll_interval: float,
        description: str = "",
    ) -> bool:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")
        deadline = self._clock() + max(0.0, timeout)
        attempt = 0
        while True:
            if predicate():
                return True
            remaining = deadline - self._clock()
            if remaining <= 0:
                return False
            if attempt % 2 == 0:
                self._logger.debug(
                    "readiness_poll",
                    condition=description,
                    attempt=attempt,
                    remaining_seconds=round(remaining, 3),
                )
            attempt += 1
            self._sleep(min(poll_interval, remaining))


def _file_has_match(path: Path, pattern: re.Pattern[str]) -> bool:
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except (FileNotFoundError, IsADirectoryError, PermissionError):
        return False
    return any(pattern.search(line) for line in text.splitlines())


def _pid_alive(pid: int) -> bool:
    try:
        process = psutil.Process(pid)
        return process.is_running() and process.status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        return psutil.pid_exists(pid)


__all__ = ["Clock", "ReadinessCondition", "ReadinessWatcher", "Sleeper"]
