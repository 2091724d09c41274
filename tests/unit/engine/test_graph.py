"""Unit tests for the stage prerequisite graph."""

from __future__ import annotations

import pytest

from ingest_harness.domain.stages import Stage
from ingest_harness.engine.graph import CycleError, StageGraph
from ingest_harness.errors import UnknownStageError


def _pipeline() -> StageGraph:
    return StageGraph.from_stages(
        [
            Stage("apt_fetch"),
            Stage("apt_store", prerequisites=("apt_fetch",)),
            Stage("apt_record", prerequisites=("apt_store",)),
            Stage("apt_delete", prerequisites=("apt_record",)),
            Stage("apt_restore", prerequisites=("apt_record",)),
            Stage("apt_fixity", prerequisites=("apt_delete", "apt_restore")),
        ]
    )


def test_execution_plan_follows_declared_prerequisite_order() -> None:
    assert _pipeline().execution_plan("apt_fixity") == (
        "apt_fetch",
        "apt_store",
        "apt_record",
        "apt_delete",
        "apt_restore",
        "apt_fixity",
    )


def test_prerequisites_direct_and_transitive() -> None:
    graph = _pipeline()

    assert graph.prerequisites("apt_fixity") == ("apt_delete", "apt_restore")
    assert graph.prerequisites("apt_record", transitive=True) == ("apt_fetch", "apt_store")
    assert graph.prerequisites("apt_fetch", transitive=True) == ()


def test_unknown_prerequisite_is_rejected() -> None:
    with pytest.raises(UnknownStageError, match="apt_missing"):
        StageGraph.from_stages([Stage("apt_store", prerequisites=("apt_missing",))])


@pytest.mark.parametrize("transitive", [False, True])
def test_unknown_stage_lookup_is_rejected(transitive: bool) -> None:
    with pytest.raises(UnknownStageError):
        _pipeline().prerequisites("dpn_sync", transitive=transitive)


def test_cycles_are_reported_canonically() -> None:
    with pytest.raises(CycleError) as excinfo:
        StageGraph.from_stages(
            [
                Stage("b", prerequisites=("c",)),
                Stage("c", prerequisites=("a",)),
                Stage("a", prerequisites=("b",)),
                Stage("d", prerequisites=("d",)),
            ]
        )

    assert excinfo.value.cycles == (("a", "b", "c", "a"), ("d", "d"))
    assert "a -> b -> c -> a" in str(excinfo.value)


def test_acyclic_graph_has_no_cycles() -> None:
    assert _pipeline().detect_cycles() == ()
