"""Unit tests for the running-process table and process handles."""

from __future__ import annotations

import subprocess
import sys

import pytest

from ingest_harness.errors import UnknownComponentError
from ingest_harness.supervisor.process_table import ProcessHandle, RunningProcessTable


def test_table_has_one_empty_entry_per_name() -> None:
    table = RunningProcessTable(["nsq_service", "apt_fetch"])

    assert table.names() == ("nsq_service", "apt_fetch")
    assert table.get("apt_fetch") is None
    assert not table.is_tracked("apt_fetch")
    assert "apt_fetch" in table
    assert len(table) == 2


def test_unknown_names_are_rejected() -> None:
    table = RunningProcessTable(["apt_fetch"])

    with pytest.raises(UnknownComponentError):
        table.get("apt_store")
    with pytest.raises(UnknownComponentError):
        table.set("apt_store", ProcessHandle("apt_store", 1))
    with pytest.raises(UnknownComponentError):
        table.clear("apt_store")


def test_running_lists_start_order_and_restart_moves_to_end() -> None:
    table = RunningProcessTable(["a", "b", "c"])
    table.set("a", ProcessHandle("a", 101))
    table.set("b", ProcessHandle("b", 102))
    table.set("c", ProcessHandle("c", 103))
    table.set("a", ProcessHandle("a", 104))

    assert table.running() == ("b", "c", "a")

    previous = table.clear("c")

    assert previous is not None and previous.pid == 103
    assert table.running() == ("b", "a")
    assert table.get("c") is None


def test_handle_liveness_tracks_the_real_process() -> None:
    popen = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
    handle = ProcessHandle("apt_fetch", popen.pid, popen=popen)
    try:
        assert handle.is_alive()
        assert handle.poll() is None
    finally:
        popen.kill()
        popen.wait(timeout=10)

    assert not handle.is_alive()
    assert handle.poll() is not None


def test_handle_without_pid_is_never_alive() -> None:
    assert not ProcessHandle("apt_fetch", 0).is_alive()
