"""Unit tests for readiness polling."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import Any

import pytest

from ingest_harness.readiness.watcher import ReadinessCondition, ReadinessWatcher
from ingest_harness.supervisor.process_table import ProcessHandle


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _watcher(clock: FakeClock, logger: Any = None) -> ReadinessWatcher:
    return ReadinessWatcher(clock=clock, sleep=clock.sleep, logger=logger)


def test_existing_match_returns_without_sleeping(tmp_path: Path, recording_logger: Any) -> None:
    log = tmp_path / "apt_record.log"
    log.write_text("booting\nConsumer ready: waiting on apt_record_topic\n")
    clock = FakeClock()

    assert _watcher(clock, recording_logger).wait_for_pattern(log, r"Consumer ready", timeout=5)
    assert clock.sleeps == []
    assert "readiness_matched" in recording_logger.events("info")


def test_missing_file_times_out_as_false(tmp_path: Path, recording_logger: Any) -> None:
    clock = FakeClock()

    matched = _watcher(clock, recording_logger).wait_for_pattern(
        tmp_path / "never.log", "ready", timeout=2.0, poll_interval=0.5
    )

    assert matched is False
    assert clock.sleeps == [0.5, 0.5, 0.5, 0.5]
    assert "readiness_timed_out" in recording_logger.events("warning")


def test_match_appearing_later_is_found(tmp_path: Path) -> None:
    log = tmp_path / "worker.log"
    clock = FakeClock()

    def sleep(seconds: float) -> None:
        clock.sleep(seconds)
        if len(clock.sleeps) == 3:
            log.write_text("ready for work\n")

    watcher = ReadinessWatcher(clock=clock, sleep=sleep)

    assert watcher.wait_for_pattern(log, "^ready", timeout=10, poll_interval=1.0)
    assert clock.sleeps == [1.0, 1.0, 1.0]


def test_last_sleep_is_capped_at_remaining_time() -> None:
    clock = FakeClock()

    assert not _watcher(clock).wait_for_condition(lambda: False, timeout=1.25, poll_interval=1.0)
    assert clock.sleeps == [1.0, 0.25]


def test_zero_timeout_checks_once() -> None:
    clock = FakeClock()
    calls: list[int] = []

    def predicate() -> bool:
        calls.append(1)
        return False

    assert not _watcher(clock).wait_for_condition(predicate, timeout=0, poll_interval=1.0)
    assert calls == [1]
    assert clock.sleeps == []


def test_wait_delegates_condition_fields(tmp_path: Path) -> None:
    log = tmp_path / "store.log"
    log.write_text("listening on :8080\n")
    condition = ReadinessCondition(log, r"listening on :\d+", poll_interval=0.1, timeout=1.0)

    assert _watcher(FakeClock()).wait(condition)


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"pattern": ""}, "non-empty"),
        ({"pattern": "("}, "invalid readiness pattern"),
        ({"pattern": "x", "poll_interval": 0}, "poll_interval"),
        ({"pattern": "x", "timeout": -1}, "timeout"),
    ],
)
def test_condition_validation(tmp_path: Path, kwargs: dict[str, Any], message: str) -> None:
    with pytest.raises(ValueError, match=message):
        ReadinessCondition(tmp_path / "x.log", **kwargs)


def test_non_positive_poll_interval_is_rejected() -> None:
    with pytest.raises(ValueError):
        _watcher(FakeClock()).wait_for_condition(lambda: True, timeout=1, poll_interval=0)


def test_process_exit_is_observed() -> None:
    popen = subprocess.Popen([sys.executable, "-c", "pass"])
    handle = ProcessHandle("apt_fetch", popen.pid, popen=popen)
    popen.wait(timeout=30)

    assert ReadinessWatcher().wait_for_process_exit(handle, timeout=5, poll_interval=0.05)


def test_live_process_times_out() -> None:
    popen = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
    try:
        clock = FakeClock()
        assert not _watcher(clock).wait_for_process_exit(popen.pid, timeout=1.0, poll_interval=0.5)
    finally:
        popen.kill()
        popen.wait(timeout=10)
