"""Stage graph, execution and result reporting."""

from ingest_harness.engine.checks import PostTestRunner
from ingest_harness.engine.context import StageContext
from ingest_harness.engine.graph import CycleError, StageGraph
from ingest_harness.engine.orchestrator import Orchestrator
from ingest_harness.engine.report import ResultReport
from ingest_harness.engine.runner import StageRunner

__all__ = [
    "CycleError",
    "Orchestrator",
    "PostTestRunner",
    "ResultReport",
    "StageContext",
    "StageGraph",
    "StageRunner",
]
