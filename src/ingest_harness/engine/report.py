"""Named boolean outcomes collected across one run."""

from __future__ import annotations

from collections.abc import Iterator

from ingest_harness.constants import FAIL_LABEL, PASS_LABEL, REPORT_HEADER, REPORT_NAME_WIDTH


class ResultReport:
    """Insertion-ordered ``name -> passed`` mapping.

    Re-recording a name overwrites its value in place; it keeps its original
    position.
    """

    __slots__ = ("_results", "_name_width")

    def __init__(self, *, name_width: int = REPORT_NAME_WIDTH) -> None:
        self._results: dict[str, bool] = {}
        self._name_width = name_width

    def record(self, name: str, passed: bool) -> None:
        if not isinstance(name, str) or not name:
            raise ValueError("result name must be a non-empty string")
        self._results[name] = bool(passed)

    def has(self, name: str) -> bool:
        return name in self._results

    def get(self, name: str) -> bool | None:
        return self._results.get(name)

    def all_passed(self) -> bool:
        return all(self._results.values())

    def failed(self) -> tuple[str, ...]:
        return tuple(name for name, passed in self._results.items() if not passed)

    def items(self) -> tuple[tuple[str, bool], ...]:
        return tuple(self._results.items())

    def render(self) -> str:
        lines = ["", REPORT_HEADER]
        for name, passed in self._results.items():
            label = PASS_LABEL if passed else FAIL_LABEL
            lines.append(f"{name:<{self._name_width}}: {label}")
        lines.append("")
        return "\n".join(lines) + "\n"

    def __contains__(self, name: object) -> bool:
        return name in self._results

    def __iter__(self) -> Iterator[str]:
        return iter(tuple(self._results))

    def __len__(self) -> int:
        return len(self._results)


__all__ = ["ResultReport"]
