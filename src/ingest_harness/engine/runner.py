"""
ingest-harness — stage execution.

Purpose
- Execute one stage: prerequisites, builds, setup actions, starts, checks.
- Record every check outcome in the shared :class:`ResultReport`.
- Guarantee cleanup on every exit path.

Functional requirements
- A stage whose memo keys are already recorded is not re-executed; its recorded
  outcome is reused. When reused as a prerequisite, every Service it or its
  prerequisites started is restarted if it is not running, whether it crashed
  or was stopped by an earlier cleanup. The cluster goes through its handler.
- A failed prerequisite skips the dependent stage with zero recorded entries.
- Build/start/setup failures abort the stage; checks that never ran are
  recorded as failed. Nothing raised inside a stage escapes ``run_stage``.
- Checks run in declared order regardless of earlier check outcomes.
"""

from __future__ import annotations

import sys
import time
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

import structlog

from ingest_harness.domain.stages import Stage, StageOutcome, StageState, StartStep
from ingest_harness.engine.report import ResultReport
from ingest_harness.errors import (
    BuildError,
    HarnessError,
    PrerequisiteFailure,
    RunTimeoutError,
    UnknownStageError,
)
from ingest_harness.observability.logging import correlation_scope

if TYPE_CHECKING:
    from ingest_harness.engine.context import StageContext
    from ingest_harness.supervisor.process_supervisor import ProcessSupervisor

ContextFactory = Callable[[Stage], "StageContext"]
Echo = Callable[[str], None]


def stdout_echo(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


class StageRunner:
    """Runs stages against one supervisor and one report for a whole run."""

    def __init__(
        self,
        stages: Mapping[str, Stage],
        supervisor: ProcessSupervisor,
        report: ResultReport,
        context_factory: ContextFactory,
        *,
        deadline: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        echo: Echo = stdout_echo,
        logger: Any | None = None,
    ) -> None:
        self._stages = dict(stages)
        self._supervisor = supervisor
        self._report = report
        self._context_factory = context_factory
        self._deadline = deadline
        self._clock = clock
        self._echo = echo
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._outcomes: dict[str, StageOutcome] = {}
        self._in_progress: set[str] = set()

    @property
    def report(self) -> ResultReport:
        return self._report

    def state_of(self, name: str) -> StageState:
        if name in self._in_progress:
            return StageState.RUNNING
        outcome = self._outcomes.get(name)
        return outcome.state if outcome is not None else StageState.PENDING

    def outcome(self, name: str) -> StageOutcome | None:
        return self._outcomes.get(name)

    def run_stage(self, name: str, more_stages_follow: bool) -> bool:
        """Run ``name`` and return the conjunction of every outcome recorded so far.

        With ``more_stages_follow`` false, every supervised process is stopped
        afterwards and the report is printed.
        """

        stage = self._lookup(name)
        try:
            self._execute(stage, revalidate=more_stages_follow)
        finally:
            if not more_stages_follow:
                self._cleanup()

        if not more_stages_follow:
            self._echo(self._report.render())
        return self._report.all_passed()

    # ---------------------------------------------------------------- stages

    def _execute(self, stage: Stage, *, revalidate: bool) -> StageOutcome:
        memoized = self._memoized_outcome(stage)
        if memoized is not None:
            self._logger.info("stage_memoized", stage=stage.name, state=str(memoized.state))
            if revalidate:
                self._revalidate_services(stage)
            return memoized

        if stage.name in self._in_progress:
            self._logger.error("stage_cycle_detected", stage=stage.name)
            return StageOutcome(stage.name, StageState.ABORTED, reason="prerequisite cycle")

        self._in_progress.add(stage.name)
        try:
            with correlation_scope(stage=stage.name):
                return self._execute_fresh(stage)
        finally:
            self._in_progress.discard(stage.name)

    def _execute_fresh(self, stage: Stage) -> StageOutcome:
        self._logger.info("stage_started", stage=stage.name, prerequisites=list(stage.prerequisites))
        try:
            self._check_deadline(stage)

            for prerequisite in stage.prerequisites:
                prerequisite_outcome = self._execute(self._lookup(prerequisite), revalidate=True)
                if not prerequisite_outcome.passed:
                    skipped = PrerequisiteFailure(stage.name, prerequisite)
                    self._logger.warning(
                        "stage_skipped", stage=stage.name, prerequisite=prerequisite
                    )
                    return self._finish(
                        StageOutcome(stage.name, StageState.SKIPPED, str(skipped), error=skipped)
                    )

            context = self._context_factory(stage)
            for component in stage.build:
                artifact = self._supervisor.build(component)
                if isinstance(artifact, BuildError):
                    raise artifact

            for action in stage.actions:
                self._logger.info("stage_action", stage=stage.name, action=action.name)
                action.fn(context)

            for step in stage.start:
                context.start(step.component)
                context.pause(step.settle_seconds)

            recorded = self._run_checks(stage, context)
        except HarnessError as exc:
            self._logger.warning("stage_aborted", stage=stage.name, error=exc)
            return self._abort(stage, exc)
        except Exception as exc:  # noqa: BLE001 - a stage must never crash the run.
            self._logger.exception("stage_aborted", stage=stage.name, error=exc)
            return self._abort(stage, exc)

        passed = all(self._report.get(name) for name in recorded)
        state = StageState.PASSED if passed else StageState.FAILED
        return self._finish(StageOutcome(stage.name, state, recorded=recorded))

    def _run_checks(self, stage: Stage, context: StageContext) -> tuple[str, ...]:
        if not stage.checks:
            self._report.record(stage.name, True)
            return (stage.name,)

        for check in stage.checks:
            with correlation_scope(check=check.name):
                try:
                    passed = bool(check.fn(context))
                except Exception as exc:  # noqa: BLE001 - one check never blocks the next.
                    self._logger.exception("check_raised", check=check.name, error=exc)
                    passed = False
                self._report.record(check.name, passed)
                self._logger.info("check_recorded", check=check.name, passed=passed)
        return stage.check_names

    def _abort(self, stage: Stage, error: BaseException) -> StageOutcome:
        names = stage.check_names or (stage.name,)
        unrun = tuple(name for name in names if name not in self._report)
        for name in unrun:
            self._report.record(name, False)
        return self._finish(
            StageOutcome(stage.name, StageState.ABORTED, str(error), recorded=unrun, error=error)
        )

    def _finish(self, outcome: StageOutcome) -> StageOutcome:
        self._outcomes[outcome.stage] = outcome
        self._logger.info(
            "stage_finished",
            stage=outcome.stage,
            state=str(outcome.state),
            reason=outcome.reason or None,
        )
        return outcome

    def _memoized_outcome(self, stage: Stage) -> StageOutcome | None:
        known = self._outcomes.get(stage.name)
        if known is not None:
            return known
        keys = stage.memo_keys
        if not all(key in self._report for key in keys):
            return None
        passed = all(self._report.get(key) for key in keys)
        outcome = StageOutcome(
            stage.name, StageState.PASSED if passed else StageState.FAILED, recorded=keys
        )
        self._outcomes[stage.name] = outcome
        return outcome

    def _revalidate_services(self, stage: Stage) -> None:
        """Bring back what a memoized stage and its prerequisites started.

        Prerequisites are handled first so infrastructure is back before the
        workers that use it. Applications are not re-run.
        """
        visited: set[str] = set()

        def visit(current: Stage) -> None:
            if current.name in visited:
                return
            visited.add(current.name)
            for name in current.prerequisites:
                if name in self._stages:
                    visit(self._stages[name])
            for step in current.start:
                self._restore(current, step)

        visit(stage)

    def _restore(self, stage: Stage, step: StartStep) -> None:
        try:
            component = self._supervisor.registry.get(step.component)
            if component.is_special:
                # Routed through the stage context; the handler's start is idempotent.
                self._context_factory(stage).start(component.name)
                return
            restarted = self._supervisor.ensure_running(component.name)
            if restarted is None:
                return
            if restarted.error is not None:
                raise restarted.error
            self._context_factory(stage).pause(step.settle_seconds)
        except HarnessError as exc:
            self._logger.warning(
                "service_restart_failed", stage=stage.name, component=step.component, error=exc
            )

    def _check_deadline(self, stage: Stage) -> None:
        if self._deadline is not None and self._clock() >= self._deadline:
            raise RunTimeoutError(f"run deadline passed before stage {stage.name} could begin")

    def _cleanup(self) -> None:
        try:
            self._supervisor.stop_all()
        except Exception as exc:  # noqa: BLE001 - cleanup must not mask the outcome.
            self._logger.exception("cleanup_failed", error=exc)

    def _lookup(self, name: str) -> Stage:
        stage = self._stages.get(name)
        if stage is None:
            raise UnknownStageError(name, tuple(self._stages))
        return stage


__all__ = ["ContextFactory", "Echo", "StageRunner", "stdout_echo"]
