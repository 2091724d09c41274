"""Process lifecycle: builds, spawning, signalling and out-of-band service operations."""

from ingest_harness.supervisor.backend import RestBackend
from ingest_harness.supervisor.builder import BuildArtifact, BuildCollaborator, GoBuilder
from ingest_harness.supervisor.cluster import DEFAULT_CLUSTER_NAME, ReplicationCluster
from ingest_harness.supervisor.commands import CommandResult, TemplateError, run_command
from ingest_harness.supervisor.process_supervisor import (
    ProcessSupervisor,
    SpecialHandler,
    StartResult,
    SupervisorConfig,
    terminate_process_group,
)
from ingest_harness.supervisor.process_table import ProcessHandle, RunningProcessTable
from ingest_harness.supervisor.workspace import WorkspaceReport, prepare_workspace

__all__ = [
    "DEFAULT_CLUSTER_NAME",
    "BuildArtifact",
    "BuildCollaborator",
    "CommandResult",
    "GoBuilder",
    "ProcessHandle",
    "ProcessSupervisor",
    "ReplicationCluster",
    "RestBackend",
    "RunningProcessTable",
    "SpecialHandler",
    "StartResult",
    "SupervisorConfig",
    "TemplateError",
    "WorkspaceReport",
    "prepare_workspace",
    "run_command",
    "terminate_process_group",
]
