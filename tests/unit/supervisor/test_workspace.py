"""Unit tests for per-run workspace preparation."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from ingest_harness.supervisor.workspace import is_within, prepare_workspace, safe_delete


def test_missing_directories_are_created(tmp_path: Path) -> None:
    root = tmp_path / "work"
    dirs = [root / "bin", root / "staging"]

    report = prepare_workspace(root, dirs)

    assert all(path.is_dir() for path in dirs)
    assert report.prepared == tuple(dirs)
    assert report.skipped == ()


def test_existing_contents_are_emptied(tmp_path: Path) -> None:
    root = tmp_path / "work"
    staging = root / "staging"
    (staging / "bag" / "data").mkdir(parents=True)
    (staging / "bag" / "data" / "file.txt").write_text("x")
    (staging / "leftover.tar").write_text("x")

    prepare_workspace(root, [staging])

    assert staging.is_dir()
    assert list(staging.iterdir()) == []


def test_directories_outside_work_root_are_left_alone(
    tmp_path: Path, recording_logger: Any
) -> None:
    root = tmp_path / "work"
    outside = tmp_path / "elsewhere"
    outside.mkdir()
    (outside / "precious.txt").write_text("keep")

    report = prepare_workspace(root, [outside], logger=recording_logger)

    assert (outside / "precious.txt").exists()
    assert report.skipped == (outside,)
    assert "workspace_clear_refused" in recording_logger.events("warning")


def test_preserved_run_log_survives(tmp_path: Path) -> None:
    root = tmp_path / "work"
    logs = root / "logs"
    current = logs / "20261017T000000Z-units"
    current.mkdir(parents=True)
    (current / "harness.jsonl").write_text("{}")
    (logs / "old.log").write_text("old")

    prepare_workspace(root, [logs], preserve=(current,))

    assert (current / "harness.jsonl").exists()
    assert not (logs / "old.log").exists()


def test_symlinks_are_unlinked_without_touching_targets(tmp_path: Path) -> None:
    root = tmp_path / "work"
    staging = root / "staging"
    staging.mkdir(parents=True)
    target = tmp_path / "target"
    target.mkdir()
    (target / "data.txt").write_text("keep")
    (staging / "link").symlink_to(target, target_is_directory=True)

    prepare_workspace(root, [staging])

    assert not (staging / "link").exists()
    assert (target / "data.txt").exists()


def test_is_within(tmp_path: Path) -> None:
    (tmp_path / "a" / "b").mkdir(parents=True)

    assert is_within(tmp_path / "a" / "b", tmp_path / "a")
    assert is_within(tmp_path / "a", tmp_path / "a")
    assert not is_within(tmp_path / "a", tmp_path / "a" / "b")
    assert not is_within(tmp_path / "missing", tmp_path)


def test_safe_delete_refuses_paths_outside_root(tmp_path: Path) -> None:
    root = tmp_path / "work"
    root.mkdir()
    outside = tmp_path / "outside.txt"
    outside.write_text("x")

    with pytest.raises(ValueError, match="outside work root"):
        safe_delete(outside, root)
    assert outside.exists()
