"""Readiness synchronization primitives."""

from ingest_harness.readiness.watcher import ReadinessCondition, ReadinessWatcher

__all__ = ["ReadinessCondition", "ReadinessWatcher"]
