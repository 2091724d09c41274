"""Static validation of the stage prerequisite graph."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from ingest_harness.domain.stages import Stage
from ingest_harness.errors import UnknownStageError


class CycleError(ValueError):
    """Raised when stage prerequisites form a cycle."""

    cycles: tuple[tuple[str, ...], ...]

    def __init__(self, cycles: Iterable[Sequence[str]]) -> None:
        self.cycles = tuple(tuple(path) for path in cycles)
        preview = ", ".join(" -> ".join(path) for path in self.cycles[:3])
        if len(self.cycles) > 3:
            preview += "..."
        super().__init__(f"stage prerequisites contain cycle(s): {preview}")


class StageGraph:
    """Prerequisite DAG over stage names.

    Declared prerequisite order is kept so execution plans match the order the
    runner visits them. Build through :meth:`from_stages`, which rejects cycles.
    """

    __slots__ = ("_prerequisites",)

    def __init__(self, prerequisites: Mapping[str, Sequence[str]]) -> None:
        self._prerequisites: dict[str, tuple[str, ...]] = {
            name: tuple(items) for name, items in prerequisites.items()
        }
        known = tuple(self._prerequisites)
        for items in self._prerequisites.values():
            for prerequisite in items:
                if prerequisite not in self._prerequisites:
                    raise UnknownStageError(prerequisite, known)

    @classmethod
    def from_stages(cls, stages: Iterable[Stage]) -> StageGraph:
        """Build and validate: unknown prerequisites and cycles are rejected."""
        graph = cls({stage.name: stage.prerequisites for stage in stages})
        cycles = graph.detect_cycles()
        if cycles:
            raise CycleError(cycles)
        return graph

    def prerequisites(self, name: str, *, transitive: bool = False) -> tuple[str, ...]:
        if not transitive:
            self._require(name)
            return self._prerequisites[name]
        return self.execution_plan(name)[:-1]

    def execution_plan(self, name: str) -> tuple[str, ...]:
        """Stages in the order a cold run of ``name`` executes them, ``name`` last."""
        self._require(name)
        plan: dict[str, None] = {}

        def visit(node: str) -> None:
            if node in plan:
                return
            for prerequisite in self._prerequisites[node]:
                visit(prerequisite)
            plan[node] = None

        visit(name)
        return tuple(plan)

    def detect_cycles(self) -> tuple[tuple[str, ...], ...]:
        """Closed cycle paths along prerequisite edges, e.g. ``("a", "b", "a")``."""
        done: set[str] = set()
        path: list[str] = []
        found: set[tuple[str, ...]] = set()

        def walk(node: str) -> None:
            if node in path:
                found.add(_canonical_cycle(path[path.index(node) :]))
                return
            if node in done:
                return
            path.append(node)
            for prerequisite in self._prerequisites[node]:
                walk(prerequisite)
            path.pop()
            done.add(node)

        for name in sorted(self._prerequisites):
            walk(name)
        return tuple(sorted(found))

    def _require(self, name: str) -> None:
        if name not in self._prerequisites:
            raise UnknownStageError(name, tuple(self._prerequisites))


def _canonical_cycle(members: Sequence[str]) -> tuple[str, ...]:
    start = members.index(min(members))
    rotated = (*members[start:], *members[:start])
    return (*rotated, rotated[0])


__all__ = ["CycleError", "StageGraph"]
