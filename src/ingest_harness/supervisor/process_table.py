"""Running-process bookkeeping for supervised components."""

from __future__ import annotations

import subprocess
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

import psutil

from ingest_harness.errors import UnknownComponentError


@dataclass(slots=True)
class ProcessHandle:
    """A spawned OS process owned by the supervisor."""

    component: str
    pid: int
    popen: subprocess.Popen[bytes] | None = field(default=None, repr=False)
    log_path: Path | None = None
    started_at: float = field(default_factory=time.monotonic)

    def poll(self) -> int | None:
        if self.popen is None:
            return None
        return self.popen.poll()

    def is_alive(self) -> bool:
        if self.pid <= 0:
            return False
        if self.popen is not None and self.popen.poll() is not None:
            return False
        try:
            process = psutil.Process(self.pid)
            return process.is_running() and process.status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return psutil.pid_exists(self.pid)


class RunningProcessTable:
    """Exactly one entry per known non-Special component: a handle or ``None``.

    Names are fixed at construction. Only :class:`ProcessSupervisor` mutates the
    table, and the engine is single-threaded, so no locking is needed.
    """

    def __init__(self, names: Iterable[str]) -> None:
        self._entries: dict[str, ProcessHandle | None] = {name: None for name in names}
        self._start_order: list[str] = []

    def get(self, name: str) -> ProcessHandle | None:
        if name not in self._entries:
            raise UnknownComponentError(name, tuple(self._entries))
        return self._entries[name]

    def set(self, name: str, handle: ProcessHandle) -> None:
        if name not in self._entries:
            raise UnknownComponentError(name, tuple(self._entries))
        self._entries[name] = handle
        if name in self._start_order:
            self._start_order.remove(name)
        self._start_order.append(name)

    def clear(self, name: str) -> ProcessHandle | None:
        if name not in self._entries:
            raise UnknownComponentError(name, tuple(self._entries))
        previous = self._entries[name]
        self._entries[name] = None
        if name in self._start_order:
            self._start_order.remove(name)
        return previous

    def is_tracked(self, name: str) -> bool:
        handle = self.get(name)
        return handle is not None and handle.pid > 0

    def running(self) -> tuple[str, ...]:
        """Tracked component names, oldest start first."""
        return tuple(self._start_order)

    def names(self) -> tuple[str, ...]:
        return tuple(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["ProcessHandle", "RunningProcessTable"]
