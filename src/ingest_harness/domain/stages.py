"""Stage definitions and per-stage outcomes."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ingest_harness.engine.context import StageContext

CheckFn = Callable[["StageContext"], bool]
ActionFn = Callable[["StageContext"], None]


class StageState(StrEnum):
    """Stage lifecycle. Terminal states are recorded once per run."""

    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self not in {StageState.PENDING, StageState.RUNNING}


@dataclass(frozen=True, slots=True)
class Check:
    """One named verification producing a boolean outcome."""

    name: str
    fn: CheckFn
    description: str = ""

    def __post_init__(self) -> None:
        _require_name(self.name, "Check.name")


@dataclass(frozen=True, slots=True)
class StageAction:
    """Setup operation executed after builds and before starts.

    Actions raise :class:`~ingest_harness.errors.HarnessError` subclasses on
    failure, which aborts the stage.
    """

    name: str
    fn: ActionFn

    def __post_init__(self) -> None:
        _require_name(self.name, "StageAction.name")


@dataclass(frozen=True, slots=True)
class StartStep:
    """Start one component, then pause ``settle_seconds`` (scaled by config)."""

    component: str
    settle_seconds: float = 0.0

    def __post_init__(self) -> None:
        _require_name(self.component, "StartStep.component")
        if self.settle_seconds < 0:
            raise ValueError("StartStep.settle_seconds must be >= 0")


@dataclass(frozen=True, slots=True)
class Stage:
    """A named test procedure: prerequisites, builds, setup, starts, checks.

    Prerequisites and components are referenced by name and resolved by the
    orchestrator's stage table and the supervisor's component registry.
    """

    name: str
    description: str = ""
    prerequisites: tuple[str, ...] = ()
    build: tuple[str, ...] = ()
    actions: tuple[StageAction, ...] = ()
    start: tuple[StartStep, ...] = ()
    checks: tuple[Check, ...] = ()
    terminal_checks: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        _require_name(self.name, "Stage.name")
        object.__setattr__(self, "prerequisites", _unique(self.prerequisites))
        object.__setattr__(self, "build", _unique(self.build))
        object.__setattr__(self, "actions", tuple(self.actions))
        object.__setattr__(self, "start", tuple(self.start))
        object.__setattr__(self, "checks", tuple(self.checks))
        object.__setattr__(self, "terminal_checks", _unique(self.terminal_checks))

        if self.name in self.prerequisites:
            raise ValueError(f"stage {self.name!r} cannot depend on itself")

        names = [check.name for check in self.checks]
        duplicates = sorted({item for item in names if names.count(item) > 1})
        if duplicates:
            raise ValueError(f"stage {self.name!r} declares duplicate checks: {duplicates}")
        unknown = sorted(set(self.terminal_checks) - set(names))
        if unknown:
            raise ValueError(f"stage {self.name!r} terminal checks are not declared: {unknown}")

    @property
    def check_names(self) -> tuple[str, ...]:
        return tuple(check.name for check in self.checks)

    @property
    def memo_keys(self) -> tuple[str, ...]:
        """Result names whose presence marks this stage as already run."""
        if self.terminal_checks:
            return self.terminal_checks
        if self.checks:
            return (self.checks[-1].name,)
        return (self.name,)


@dataclass(slots=True)
class StageOutcome:
    """Terminal result of one stage invocation."""

    stage: str
    state: StageState
    reason: str = ""
    recorded: tuple[str, ...] = ()
    error: BaseException | None = field(default=None, repr=False)

    @property
    def passed(self) -> bool:
        return self.state is StageState.PASSED


def _require_name(value: object, path: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{path} must be a non-empty string")


def _unique(items: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for item in items:
        _require_name(item, "name")
        seen.setdefault(item, None)
    return tuple(seen)


__all__ = [
    "ActionFn",
    "Check",
    "CheckFn",
    "Stage",
    "StageAction",
    "StageOutcome",
    "StageState",
    "StartStep",
]
