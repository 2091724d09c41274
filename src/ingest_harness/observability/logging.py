"""Run log: structlog decision events written as JSON lines.

Every run writes ``<log_dir>/<run_id>/harness.jsonl``. Harness modules log
through ``structlog.get_logger(__name__)``; :func:`setup_logging` routes those
events through stdlib logging into a bounded queue drained by a
``QueueListener`` thread, so a slow disk never stalls a stage. Fields bound
with :func:`correlation_scope` are copied onto every record emitted inside
the scope.
"""

from __future__ import annotations

import contextvars
import json
import logging
import logging.handlers
import math
import queue
import re
import sys
import threading
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import structlog

from ingest_harness.constants import DEFAULT_LOGGER_NAME

REDACTED: Final[str] = "***REDACTED***"
RUN_LOG_FILENAME: Final[str] = "harness.jsonl"

_SECRET_KEY: Final[re.Pattern[str]] = re.compile(
    r"(?i)secret|token|password|api_?key|authorization|credential|cookie|private_key"
)
_INLINE_SECRETS: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
    (
        re.compile(r"(?i)\b(api[_-]?key|token|password|secret|authorization)(\s*[:=]\s*)[^\s,;]+"),
        rf"\1\2{REDACTED}",
    ),
    (re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*"), f"Bearer {REDACTED}"),
    (re.compile(r"\b(?:AKIA|ASIA)[A-Z0-9]{16}\b"), REDACTED),
)

# Attributes stdlib sets on every record; ``extra`` may not reuse them.
_RECORD_ATTRS: Final[frozenset[str]] = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "correlation",
}

_CORRELATION: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "ingest_harness_correlation", default={}
)


class RunLog:
    """Handle for one run's log file. :meth:`close` is idempotent."""

    def __init__(
        self,
        *,
        run_id: str,
        path: Path,
        logger: logging.Logger,
        handler: _QueueHandler,
        listener: logging.handlers.QueueListener,
        sinks: tuple[logging.Handler, ...],
    ) -> None:
        self.run_id = run_id
        self.path = path
        self.logger = logger
        self._handler = handler
        self._listener = listener
        self._sinks = sinks
        self._lock = threading.Lock()
        self._closed = False

    @property
    def run_dir(self) -> Path:
        return self.path.parent

    @property
    def dropped(self) -> int:
        """Records discarded because the queue was full."""
        return self._handler.dropped

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self, *, timeout_seconds: float = 2.0) -> None:
        """Detach from the logger, drain the queue and close the sinks."""
        with self._lock:
            if self._closed:
                return
            self.logger.removeHandler(self._handler)
            deadline = time.monotonic() + timeout_seconds
            while self._handler.queue.unfinished_tasks and time.monotonic() < deadline:
                time.sleep(0.01)
            self._listener.stop()
            self._handler.close()
            for sink in self._sinks:
                sink.close()
            self._closed = True


class _QueueHandler(logging.handlers.QueueHandler):
    """Snapshots the correlation fields and never blocks the caller."""

    def __init__(self, log_queue: queue.Queue[Any]) -> None:
        super().__init__(log_queue)
        self.dropped = 0

    def prepare(self, record: logging.LogRecord) -> Any:
        record.correlation = current_correlation()
        return super().prepare(record)

    def enqueue(self, record: logging.LogRecord) -> None:
        # Called under the handler lock, so the counter needs no lock of its own.
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            self.dropped += 1


class _JsonLinesFormatter(logging.Formatter):
    def __init__(self, run_id: str, *, redact_secrets: bool) -> None:
        super().__init__()
        self._run_id = run_id
        self._redact_secrets = redact_secrets

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "run_id": self._run_id,
        }
        entry.update(sorted(getattr(record, "correlation", {}).items()))
        fields = {
            key: _jsonable(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        if fields:
            entry["fields"] = fields
        if self._redact_secrets:
            entry = redact(entry)
        return json.dumps(entry, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def setup_logging(
    *,
    run_id: str,
    log_dir: Path | str,
    level: int | str = "INFO",
    mirror_to_stderr: bool = False,
    redact_secrets: bool = True,
    logger_name: str = DEFAULT_LOGGER_NAME,
    queue_size: int = 4096,
) -> RunLog:
    """Open ``<log_dir>/<run_id>/harness.jsonl`` and route harness events into it.

    Handlers left on ``logger_name`` by an earlier run are replaced. structlog is
    (re)configured as part of the call.
    """

    if not run_id or Path(run_id).name != run_id:
        raise ValueError(f"run_id must be a single path component, got {run_id!r}")
    if queue_size <= 0:
        raise ValueError("queue_size must be positive")
    resolved_level = _resolve_level(level)

    path = Path(log_dir) / run_id / RUN_LOG_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)

    formatter = _JsonLinesFormatter(run_id, redact_secrets=redact_secrets)
    sinks: list[logging.Handler] = [logging.FileHandler(path, encoding="utf-8")]
    if mirror_to_stderr:
        # stdout carries the results report.
        sinks.append(logging.StreamHandler(sys.stderr))
    for sink in sinks:
        sink.setFormatter(formatter)

    handler = _QueueHandler(queue.Queue(maxsize=queue_size))
    listener = logging.handlers.QueueListener(handler.queue, *sinks)

    logger = logging.getLogger(logger_name)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(resolved_level)
    logger.propagate = False
    logger.addHandler(handler)
    listener.start()

    configure_structlog()
    return RunLog(
        run_id=run_id,
        path=path,
        logger=logger,
        handler=handler,
        listener=listener,
        sinks=tuple(sinks),
    )


def configure_structlog() -> None:
    """Send structlog events to stdlib logging; event kwargs become record extras."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            _rename_reserved_keys,
            structlog.stdlib.render_to_log_kwargs,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def current_correlation() -> dict[str, str]:
    return dict(_CORRELATION.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind ``stage=``, ``check=`` or ``component=`` for the block; ``None`` unbinds."""
    bound = current_correlation()
    for key, value in fields.items():
        if value is None:
            bound.pop(key, None)
        else:
            bound[key] = str(value)
    token = _CORRELATION.set(bound)
    try:
        yield
    finally:
        _CORRELATION.reset(token)


def redact(value: Any, *, key: str | None = None) -> Any:
    """Mask credential-looking keys and inline secrets in a JSON-ready value."""
    if key is not None and _SECRET_KEY.search(key):
        return REDACTED
    if isinstance(value, str):
        for pattern, replacement in _INLINE_SECRETS:
            value = pattern.sub(replacement, value)
        return value
    if isinstance(value, list):
        return [redact(item) for item in value]
    if isinstance(value, dict):
        return {name: redact(item, key=name) for name, item in value.items()}
    return value


def _rename_reserved_keys(
    logger: object, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    for key in [key for key in event_dict if key in _RECORD_ATTRS]:
        if key not in {"exc_info", "stack_info"}:
            event_dict[f"{key}_"] = event_dict.pop(key)
    return event_dict


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelNamesMapping().get(level.strip().upper())
    if resolved is None:
        raise ValueError(f"unknown log level {level!r}")
    return resolved


def _jsonable(value: object) -> Any:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else repr(value)
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_jsonable(item) for item in value), key=repr)
    return str(value)


__all__ = [
    "REDACTED",
    "RUN_LOG_FILENAME",
    "RunLog",
    "configure_structlog",
    "correlation_scope",
    "current_correlation",
    "redact",
    "setup_logging",
]
