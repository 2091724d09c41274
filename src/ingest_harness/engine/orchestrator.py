"""
ingest-harness — run orchestration.

Purpose
- Wire one run's collaborators (builder, supervisor, backend, cluster,
  readiness watcher, post-test runner) from a :class:`HarnessConfig` and a
  :class:`Catalog`.
- Expose the single entry point ``run(stage, more_stages_follow)``.

Functional requirements
- Unknown stage names are rejected before anything is started.
- The stage graph is validated once at construction.
- ``prepare`` creates and empties scratch directories and clears the test
  cache before the first stage.
"""

from __future__ import annotations

import dataclasses
import time
from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any

import structlog

from ingest_harness.domain.components import ComponentRegistry, ComponentRole
from ingest_harness.domain.stages import Stage
from ingest_harness.engine.checks import PostTestRunner
from ingest_harness.engine.context import StageContext
from ingest_harness.engine.graph import StageGraph
from ingest_harness.engine.report import ResultReport
from ingest_harness.engine.runner import ContextFactory, Echo, StageRunner, stdout_echo
from ingest_harness.errors import UnknownStageError
from ingest_harness.readiness.watcher import ReadinessWatcher
from ingest_harness.supervisor.backend import RestBackend
from ingest_harness.supervisor.builder import GoBuilder
from ingest_harness.supervisor.cluster import ReplicationCluster
from ingest_harness.supervisor.process_supervisor import ProcessSupervisor, SupervisorConfig
from ingest_harness.supervisor.workspace import WorkspaceReport, prepare_workspace

if TYPE_CHECKING:
    from ingest_harness.catalog.loader import Catalog
    from ingest_harness.config.settings import HarnessConfig


class Orchestrator:
    """Owns the stage table, the report and the runner for one run."""

    def __init__(
        self,
        stages: Iterable[Stage],
        supervisor: ProcessSupervisor,
        *,
        context_factory: ContextFactory,
        report: ResultReport | None = None,
        run_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        echo: Echo = stdout_echo,
        prepare: Callable[[], WorkspaceReport | None] | None = None,
        logger: Any | None = None,
    ) -> None:
        self._stages: dict[str, Stage] = {stage.name: stage for stage in stages}
        self._graph = StageGraph.from_stages(self._stages.values())
        self._supervisor = supervisor
        self._report = report if report is not None else ResultReport()
        self._prepare = prepare
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        deadline = clock() + run_timeout if run_timeout is not None else None
        self._runner = StageRunner(
            self._stages,
            supervisor,
            self._report,
            context_factory,
            deadline=deadline,
            clock=clock,
            echo=echo,
            logger=self._logger,
        )

    @classmethod
    def from_config(
        cls,
        config: HarnessConfig,
        catalog: Catalog,
        *,
        init_cluster: bool = False,
        verbose: bool = False,
        echo: Echo = stdout_echo,
        logger: Any | None = None,
    ) -> Orchestrator:
        log = logger if logger is not None else structlog.get_logger(__name__)
        registry = _bind_backend_command(catalog.registry(), config)

        supervisor = ProcessSupervisor(
            registry,
            GoBuilder.from_config(config, logger=log),
            SupervisorConfig.from_harness_config(config),
            logger=log,
        )
        backend = RestBackend.from_config(supervisor, config, logger=log)
        cluster: ReplicationCluster | None = ReplicationCluster.from_config(
            supervisor, config, initialize_on_start=init_cluster, logger=log
        )
        if cluster.name in {component.name for component in registry.special()}:
            supervisor.register_special_handler(cluster)
        else:
            cluster = None

        watcher = ReadinessWatcher(logger=log)
        post_tests = PostTestRunner.from_config(config, verbose=verbose, logger=log)

        def context_factory(stage: Stage) -> StageContext:
            return StageContext(
                stage=stage.name,
                supervisor=supervisor,
                watcher=watcher,
                post_tests=post_tests,
                log_dir=config.paths.log_dir,
                timing=config.timing,
                backend=backend,
                cluster=cluster,
                logger=log,
            )

        def prepare() -> WorkspaceReport:
            report = prepare_workspace(
                config.paths.work_root,
                config.paths.scratch_dirs(),
                preserve=(config.observability.log_dir,),
                logger=log,
            )
            post_tests.clear_test_cache()
            return report

        return cls(
            catalog.stages,
            supervisor,
            context_factory=context_factory,
            run_timeout=config.timing.run_timeout,
            echo=echo,
            prepare=prepare,
            logger=log,
        )

    @property
    def report(self) -> ResultReport:
        return self._report

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    @property
    def runner(self) -> StageRunner:
        return self._runner

    def stage_names(self) -> tuple[str, ...]:
        return tuple(self._stages)

    def describe(self) -> Mapping[str, str]:
        return {name: stage.description for name, stage in self._stages.items()}

    def plan(self, name: str) -> tuple[str, ...]:
        """Stages ``name`` would execute, prerequisites first."""
        self._require_stage(name)
        return self._graph.execution_plan(name)

    def prepare(self) -> WorkspaceReport | None:
        if self._prepare is None:
            return None
        return self._prepare()

    def run(self, stage_name: str, more_stages_follow: bool = False) -> bool:
        """Run ``stage_name``; the return value is the conjunction of every result so far."""
        self._require_stage(stage_name)
        self._logger.info(
            "run_requested", stage=stage_name, more_stages_follow=more_stages_follow
        )
        return self._runner.run_stage(stage_name, more_stages_follow)

    def _require_stage(self, name: str) -> Stage:
        stage = self._stages.get(name)
        if stage is None:
            error = UnknownStageError(name, self.stage_names())
            self._logger.error("unknown_stage", stage=name, known=list(self._stages))
            raise error
        return stage


def _bind_backend_command(registry: ComponentRegistry, config: HarnessConfig) -> ComponentRegistry:
    """Backend components without their own command run ``backend.server_command``."""
    bound = ComponentRegistry()
    for component in registry:
        if component.role is ComponentRole.BACKEND and not component.command:
            component = dataclasses.replace(
                component,
                command=config.backend.server_command,
                cwd=component.cwd or "{pharos_root}",
            )
        bound.register(component)
    return bound


__all__ = ["Orchestrator"]
