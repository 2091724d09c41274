"""Unit tests for run orchestration and collaborator wiring."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pytest

from ingest_harness.catalog import load_catalog
from ingest_harness.config.settings import HarnessConfig, TimingSettings
from ingest_harness.domain.components import (
    Component,
    ComponentRegistry,
    ComponentRole,
    LifecycleKind,
)
from ingest_harness.domain.stages import Check, Stage, StartStep
from ingest_harness.engine.context import StageContext
from ingest_harness.engine.orchestrator import Orchestrator
from ingest_harness.errors import UnknownStageError
from ingest_harness.supervisor.builder import BuildArtifact
from ingest_harness.supervisor.cluster import ReplicationCluster
from ingest_harness.supervisor.process_supervisor import ProcessSupervisor, SupervisorConfig


class QuietSupervisor:
    def __init__(self) -> None:
        self.registry = ComponentRegistry()
        self.stopped = 0

    def stop_all(self) -> None:
        self.stopped += 1


def _orchestrator(stages: list[Stage], logger: Any = None, **kwargs: Any) -> Orchestrator:
    supervisor = QuietSupervisor()

    def factory(stage: Stage) -> StageContext:
        return StageContext(
            stage=stage.name,
            supervisor=supervisor,  # type: ignore[arg-type]
            watcher=None,  # type: ignore[arg-type]
            post_tests=None,  # type: ignore[arg-type]
            log_dir=Path("."),
        )

    return Orchestrator(
        stages,
        supervisor,  # type: ignore[arg-type]
        context_factory=factory,
        echo=lambda text: None,
        logger=logger,
        **kwargs,
    )


def _stages() -> list[Stage]:
    return [
        Stage("units", description="Unit suite", checks=(Check("unit_tests", lambda c: True),)),
        Stage(
            "apt_queue",
            prerequisites=("units",),
            checks=(Check("apt_queue_test", lambda c: False),),
        ),
    ]


def test_run_returns_conjunction_and_stops_everything() -> None:
    orchestrator = _orchestrator(_stages())

    assert orchestrator.run("units")
    assert not orchestrator.run("apt_queue")

    assert orchestrator.report.items() == (("unit_tests", True), ("apt_queue_test", False))
    assert orchestrator.supervisor.stopped == 2


def test_more_stages_follow_defers_cleanup() -> None:
    orchestrator = _orchestrator(_stages())

    orchestrator.run("units", more_stages_follow=True)

    assert orchestrator.supervisor.stopped == 0


def test_unknown_stage_is_rejected_and_logged(recording_logger: Any) -> None:
    orchestrator = _orchestrator(_stages(), logger=recording_logger)

    with pytest.raises(UnknownStageError, match="apt_nope"):
        orchestrator.run("apt_nope")

    assert "unknown_stage" in recording_logger.events("error")
    assert orchestrator.report.items() == ()


def test_plan_and_describe() -> None:
    orchestrator = _orchestrator(_stages())

    assert orchestrator.plan("apt_queue") == ("units", "apt_queue")
    assert orchestrator.stage_names() == ("units", "apt_queue")
    assert orchestrator.describe()["units"] == "Unit suite"
    assert orchestrator.prepare() is None


def test_run_timeout_sets_deadline_from_clock() -> None:
    orchestrator = _orchestrator(_stages(), run_timeout=0.0, clock=lambda: 50.0)

    assert not orchestrator.run("units")
    assert orchestrator.report.get("unit_tests") is False


def _config(tmp_path: Path) -> HarnessConfig:
    config_path = tmp_path / "harness.toml"
    noop = f'["{sys.executable}", "-c", "pass"]'
    config_path.write_text(f"[tests]\nclear_cache_command = {noop}\n", encoding="utf-8")
    return HarnessConfig.load(config_path, environ={"PATH": "/usr/bin:/bin"})


def test_from_config_wires_packaged_catalog(tmp_path: Path, recording_logger: Any) -> None:
    config = _config(tmp_path)
    orchestrator = Orchestrator.from_config(
        config, load_catalog(), echo=lambda text: None, logger=recording_logger
    )

    pharos = orchestrator.supervisor.registry.get("pharos")
    assert pharos.command == ("rbenv", "exec", "rails", "server")
    assert pharos.cwd == "{pharos_root}"
    assert "units" in orchestrator.stage_names()
    assert orchestrator.plan("apt_fixity")[0] == "apt_bucket_reader"


def test_prepare_creates_scratch_directories(tmp_path: Path) -> None:
    config = _config(tmp_path)
    stale = config.paths.staging_dir / "old_bag.tar"
    stale.parent.mkdir(parents=True)
    stale.write_text("x")
    orchestrator = Orchestrator.from_config(config, load_catalog(), echo=lambda text: None)

    report = orchestrator.prepare()

    assert report is not None
    assert all(path.is_dir() for path in config.paths.scratch_dirs())
    assert not stale.exists()


def test_cluster_handler_is_registered_for_special_component(tmp_path: Path) -> None:
    orchestrator = Orchestrator.from_config(
        _config(tmp_path), load_catalog(), init_cluster=True, echo=lambda text: None
    )

    handlers = orchestrator.supervisor._special_handlers
    assert isinstance(handlers["dpn_cluster"], ReplicationCluster)


class NoBuild:
    def build(self, component: Component) -> BuildArtifact:
        return BuildArtifact(component.name, Path("/bin") / component.name)


def test_reused_prerequisite_restarts_services_stopped_by_earlier_run(tmp_path: Path) -> None:
    registry = ComponentRegistry.from_components(
        [
            Component(
                "broker",
                LifecycleKind.SERVICE,
                ComponentRole.BROKER,
                command=(sys.executable, "-c", "import time; time.sleep(60)"),
            )
        ]
    )
    supervisor = ProcessSupervisor(
        registry,
        NoBuild(),
        SupervisorConfig(bin_dir=tmp_path, log_dir=tmp_path / "logs", stop_grace_seconds=2.0),
    )

    def factory(stage: Stage) -> StageContext:
        return StageContext(
            stage=stage.name,
            supervisor=supervisor,
            watcher=None,  # type: ignore[arg-type]
            post_tests=None,  # type: ignore[arg-type]
            log_dir=tmp_path / "logs",
            timing=TimingSettings(time_scale=0.0),
        )

    stages = [
        Stage(
            "bucket_reader",
            start=(StartStep("broker"),),
            checks=(Check("bucket_reader_test", lambda c: True),),
        ),
        Stage(
            "fetch",
            prerequisites=("bucket_reader",),
            checks=(Check("fetch_test", lambda c: c.supervisor.is_running("broker")),),
        ),
    ]
    orchestrator = Orchestrator(stages, supervisor, context_factory=factory, echo=lambda text: None)

    try:
        assert orchestrator.run("bucket_reader")
        assert not supervisor.is_running("broker")

        assert orchestrator.run("fetch")
    finally:
        supervisor.stop_all()

    assert orchestrator.report.get("fetch_test") is True
    assert not supervisor.is_running("broker")
