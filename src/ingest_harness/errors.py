"""Harness error taxonomy.

Build and start failures are stage-aborting but never process-fatal; they are
returned as values across supervisor boundaries and converted into ``False``
outcomes by the stage runner. Usage errors (unknown stage or component, invalid
operation on a Special component) are raised and surfaced to the operator.
"""

from __future__ import annotations


class HarnessError(RuntimeError):
    """Base error for harness failures."""


class BuildError(HarnessError):
    """Compilation of a component failed."""

    def __init__(
        self,
        component: str,
        message: str,
        *,
        exit_code: int | None = None,
        output: str = "",
    ) -> None:
        self.component = component
        self.exit_code = exit_code
        self.output = output
        super().__init__(f"build failed for {component}: {message}")


class StartError(HarnessError):
    """A process failed to spawn, or an application exited non-zero."""

    def __init__(self, component: str, message: str, *, exit_code: int | None = None) -> None:
        self.component = component
        self.exit_code = exit_code
        super().__init__(f"start failed for {component}: {message}")


class StopError(HarnessError):
    """Signaling a process failed. Always recovered locally and logged."""

    def __init__(self, component: str, message: str) -> None:
        self.component = component
        super().__init__(f"stop failed for {component}: {message}")


class InvalidOperationError(HarnessError):
    """Raised when the generic supervisor is asked to start/stop a Special component."""


class UnknownComponentError(HarnessError):
    """Raised when a component name is not present in the registry."""

    def __init__(self, name: str, known: tuple[str, ...] = ()) -> None:
        self.name = name
        self.known = known
        detail = f"; known: [{', '.join(known)}]" if known else ""
        super().__init__(f"unknown component {name!r}{detail}")


class UnknownStageError(HarnessError):
    """Raised when a stage name is not registered with the orchestrator."""

    def __init__(self, name: str, known: tuple[str, ...] = ()) -> None:
        self.name = name
        self.known = known
        detail = f"; known: [{', '.join(known)}]" if known else ""
        super().__init__(f"unknown stage {name!r}{detail}")


class PrerequisiteFailure(HarnessError):
    """A prerequisite stage reported ``False``; the dependent stage is skipped."""

    def __init__(self, stage: str, prerequisite: str) -> None:
        self.stage = stage
        self.prerequisite = prerequisite
        super().__init__(
            f"skipping {stage} because prerequisite {prerequisite} did not pass"
        )


class RunTimeoutError(HarnessError):
    """The global run deadline elapsed before a stage could begin."""


class BackendError(HarnessError):
    """An out-of-band REST backend or cluster operation did not complete."""


class CatalogError(HarnessError, ValueError):
    """Raised when a component/stage catalog cannot be loaded or validated."""


__all__ = [
    "BackendError",
    "BuildError",
    "CatalogError",
    "HarnessError",
    "InvalidOperationError",
    "PrerequisiteFailure",
    "RunTimeoutError",
    "StartError",
    "StopError",
    "UnknownComponentError",
    "UnknownStageError",
]
