"""Plain-text output for the ingest-harness CLI.

Purpose
- Keep every operator-facing line in one place so command handlers stay small.
- Write deterministic text; the result table itself is rendered by
  :class:`~ingest_harness.engine.report.ResultReport`.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from collections.abc import Sequence


class CLIRenderer:
    """Thin CLI output renderer writing to ``out`` (and ``err`` for diagnostics)."""

    def __init__(
        self,
        *,
        verbose: bool = False,
        out: TextIO | None = None,
        err: TextIO | None = None,
    ) -> None:
        self.verbose = verbose
        self._out = out
        self._err = err

    @property
    def out(self) -> TextIO:
        return self._out if self._out is not None else sys.stdout

    @property
    def err(self) -> TextIO:
        return self._err if self._err is not None else sys.stderr

    def text(self, line: str) -> None:
        print(line, file=self.out)

    def kv(self, key: str, value: object) -> None:
        print(f"{key}: {value}", file=self.out)

    def section(self, title: str) -> None:
        print(f"\n{title}", file=self.out)

    def raw(self, text: str) -> None:
        """Write ``text`` unchanged and flush; used for the result report."""
        self.out.write(text)
        self.out.flush()

    def note(self, text: str) -> None:
        print(text, file=self.err)

    def error(self, text: str) -> None:
        print(f"error: {text}", file=self.err)

    def table(self, headers: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
        """Print left-aligned columns separated by two spaces."""

        if not rows:
            return
        widths = [len(header) for header in headers]
        for row in rows:
            for index, cell in enumerate(row[: len(headers)]):
                widths[index] = max(widths[index], len(cell))

        def _line(cells: Sequence[str]) -> str:
            padded = [
                (cells[index] if index < len(cells) else "").ljust(widths[index])
                for index in range(len(headers))
            ]
            return "  ".join(padded).rstrip()

        print(_line(headers), file=self.out)
        print("  ".join("-" * width for width in widths), file=self.out)
        for row in rows:
            print(_line(row), file=self.out)


def create_renderer(
    *, verbose: bool = False, out: TextIO | None = None, err: TextIO | None = None
) -> CLIRenderer:
    return CLIRenderer(verbose=verbose, out=out, err=err)


__all__ = ["CLIRenderer", "create_renderer"]
