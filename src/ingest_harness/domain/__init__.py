"""Domain types: components, stages and outcomes."""

from ingest_harness.domain.components import (
    DEFAULT_WORKER_COMMAND,
    Component,
    ComponentRegistry,
    ComponentRole,
    LifecycleKind,
)
from ingest_harness.domain.stages import (
    ActionFn,
    Check,
    CheckFn,
    Stage,
    StageAction,
    StageOutcome,
    StageState,
    StartStep,
)

__all__ = [
    "DEFAULT_WORKER_COMMAND",
    "ActionFn",
    "Check",
    "CheckFn",
    "Component",
    "ComponentRegistry",
    "ComponentRole",
    "LifecycleKind",
    "Stage",
    "StageAction",
    "StageOutcome",
    "StageState",
    "StartStep",
]
