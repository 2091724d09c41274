"""Shared fixtures for the ingest-harness test suite."""

from __future__ import annotations

from typing import Any

import pytest


class RecordingLogger:
    """Structlog-shaped logger that keeps every event for assertions."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    def _record(self, level: str, event: str, **fields: Any) -> None:
        self.records.append((level, event, fields))

    def debug(self, event: str, **fields: Any) -> None:
        self._record("debug", event, **fields)

    def info(self, event: str, **fields: Any) -> None:
        self._record("info", event, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._record("warning", event, **fields)

    def error(self, event: str, **fields: Any) -> None:
        self._record("error", event, **fields)

    def exception(self, event: str, **fields: Any) -> None:
        self._record("exception", event, **fields)

    def events(self, level: str | None = None) -> list[str]:
        return [event for lvl, event, _ in self.records if level is None or lvl == level]

    def fields_for(self, event: str) -> list[dict[str, Any]]:
        return [fields for _, name, fields in self.records if name == event]


@pytest.fixture
def recording_logger() -> RecordingLogger:
    return RecordingLogger()
