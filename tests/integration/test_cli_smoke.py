"""
ingest-harness — CLI subprocess smoke contracts

Purpose
- Run ``python -m ingest_harness`` end to end against a throwaway catalog whose
  components are small Python programs.
- Verify exit codes, the printed report, readiness waiting and process cleanup.
"""

from __future__ import annotations

import json
import os
import subprocess
import sys
import time
from pathlib import Path

import psutil
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"

pytestmark = pytest.mark.integration


def _run_cli(workdir: Path, *args: str) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
    )
    return subprocess.run(
        [sys.executable, "-m", "ingest_harness", *args],
        cwd=workdir,
        text=True,
        capture_output=True,
        check=False,
        env=env,
        timeout=120,
    )


def _write(path: Path, contents: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(contents, encoding="utf-8")


def _seed(workdir: Path, *, service_ready: bool = True) -> Path:
    python = json.dumps(sys.executable)
    pid_file = workdir / "service.pid"
    banner = "worker ready" if service_ready else "still booting"
    service_code = (
        "import os, pathlib, time; "
        f"pathlib.Path({str(pid_file)!r}).write_text(str(os.getpid())); "
        f"print({banner!r}, flush=True); "
        "time.sleep(120)"
    )
    log_path = workdir / "tmp" / "logs" / "echo_service.log"
    _write(
        workdir / "exchange" / "integration" / "echo_post_test.py",
        "import pathlib, os, sys\n"
        "assert os.environ['RUN_EXCHANGE_INTEGRATION'] == 'true'\n"
        f"text = pathlib.Path({str(log_path)!r}).read_text()\n"
        "sys.exit(0 if 'worker ready' in text else 1)\n",
    )
    _write(
        workdir / "stages.yaml",
        "schema_version: 1\n"
        "components:\n"
        "  - name: echo_service\n"
        "    kind: service\n"
        "    buildable: false\n"
        f"    command: [{python}, \"-c\", {json.dumps(service_code)}]\n"
        "    log_file: echo_service.log\n"
        "stages:\n"
        "  echo:\n"
        "    description: Start a service and wait until it is ready\n"
        "    start: [echo_service]\n"
        "    checks:\n"
        "      - name: echo_ready\n"
        "        post_test: echo_post_test.py\n"
        "        before:\n"
        "          - {wait_for: {source: echo_service.log, pattern: worker ready, timeout: 3}}\n"
        "  follow_up:\n"
        "    prerequisites: [echo]\n"
        "    checks:\n"
        "      - name: follow_up_check\n"
        "        post_test: echo_post_test.py\n",
    )
    _write(
        workdir / "harness.toml",
        "[paths]\n"
        'catalog = "stages.yaml"\n'
        "[tests]\n"
        f'command = [{python}, "{{file}}"]\n'
        f'clear_cache_command = [{python}, "-c", "pass"]\n'
        "[timing]\n"
        "poll_interval_seconds = 0.1\n"
        "stop_grace_seconds = 2.0\n",
    )
    return pid_file


def _assert_reaped(pid_file: Path) -> None:
    pid = int(pid_file.read_text())
    deadline = time.monotonic() + 10
    while time.monotonic() < deadline:
        if not psutil.pid_exists(pid):
            return
        try:
            if psutil.Process(pid).status() == psutil.STATUS_ZOMBIE:
                return
        except psutil.NoSuchProcess:
            return
        time.sleep(0.1)
    pytest.fail(f"service process {pid} outlived the harness")


def test_stage_with_prerequisite_passes_and_cleans_up(tmp_path: Path) -> None:
    pid_file = _seed(tmp_path)

    completed = _run_cli(tmp_path, "follow_up")

    assert completed.returncode == 0, completed.stderr
    assert "---Results---" in completed.stdout
    assert f"{'echo_ready':<30}: PASS" in completed.stdout
    assert f"{'follow_up_check':<30}: PASS" in completed.stdout
    assert "Run log:" in completed.stderr
    _assert_reaped(pid_file)


def test_readiness_timeout_fails_the_run(tmp_path: Path) -> None:
    pid_file = _seed(tmp_path, service_ready=False)

    completed = _run_cli(tmp_path, "follow_up")

    assert completed.returncode == 1
    assert f"{'echo_ready':<30}: FAIL" in completed.stdout
    assert "follow_up_check" not in completed.stdout
    _assert_reaped(pid_file)


def test_list_and_unknown_stage(tmp_path: Path) -> None:
    _seed(tmp_path)

    listed = _run_cli(tmp_path, "--list")
    unknown = _run_cli(tmp_path, "nope")

    assert listed.returncode == 0
    assert "follow_up" in listed.stdout
    assert unknown.returncode == 2
    assert "Unknown stage: nope" in unknown.stderr


def test_invalid_config_exits_two(tmp_path: Path) -> None:
    _write(tmp_path / "harness.toml", "[timing]\ntime_scale = -1\n")

    completed = _run_cli(tmp_path, "units")

    assert completed.returncode == 2
    assert "timing.time_scale" in completed.stderr
