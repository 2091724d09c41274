"""
ingest-harness — per-run workspace preparation.

Purpose
- Give every run empty log, binary, staging, restore and broker-data
  directories.

Functional requirements
- Missing directories are created.
- Existing contents are deleted only when the directory resolves inside the
  configured work root; anything else is left alone and reported.
- Symlinks are unlinked without traversing into their targets.
"""

from __future__ import annotations

import shutil
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog


@dataclass(frozen=True, slots=True)
class WorkspaceReport:
    prepared: tuple[Path, ...]
    skipped: tuple[Path, ...]


def prepare_workspace(
    work_root: Path,
    directories: Iterable[Path],
    *,
    preserve: Iterable[Path] = (),
    logger: Any | None = None,
) -> WorkspaceReport:
    """Create ``directories`` and empty those inside ``work_root``.

    Entries that are, or contain, a ``preserve`` path (the live run log) are kept.
    """

    log = logger if logger is not None else structlog.get_logger(__name__)
    root = Path(work_root)
    root.mkdir(parents=True, exist_ok=True)
    resolved_root = root.resolve(strict=True)
    kept_paths = tuple(Path(item) for item in preserve)

    prepared: list[Path] = []
    skipped: list[Path] = []
    for directory in directories:
        target = Path(directory)
        target.mkdir(parents=True, exist_ok=True)
        if not is_within(target, resolved_root):
            log.warning("workspace_clear_refused", path=target, work_root=resolved_root)
            skipped.append(target)
            continue
        for child in sorted(target.iterdir()):
            if any(is_within(kept, child) for kept in kept_paths):
                continue
            safe_delete(child, resolved_root)
        prepared.append(target)

    log.info("workspace_prepared", prepared=prepared, skipped=skipped)
    return WorkspaceReport(prepared=tuple(prepared), skipped=tuple(skipped))


def is_within(child: Path | str, parent: Path | str) -> bool:
    """Return ``True`` if resolved ``child`` is ``parent`` or lies below it."""

    try:
        resolved_parent = Path(parent).resolve(strict=True)
        resolved_child = Path(child).resolve(strict=True)
    except FileNotFoundError:
        return False
    if not resolved_parent.is_dir():
        return False
    return _is_relative_to(resolved_child, resolved_parent)


def safe_delete(path: Path | str, workspace_root: Path | str) -> None:
    """Delete ``path`` only if it is contained within ``workspace_root``."""

    workspace = Path(workspace_root).resolve(strict=True)
    target = Path(path)
    candidate = target.parent.resolve(strict=True) / target.name
    if not _is_relative_to(candidate, workspace):
        raise ValueError(f"refusing to delete path outside work root: {target!s}")

    if target.is_symlink():
        target.unlink()
        return
    if target.is_dir():
        shutil.rmtree(target)
        return
    target.unlink()


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True


__all__ = ["WorkspaceReport", "is_within", "prepare_workspace", "safe_delete"]
