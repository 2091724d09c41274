"""
ingest-harness — integration-test orchestrator for the preservation pipeline.

Drives the ingest workers end to end: compiles worker binaries, starts the
message broker, REST backend and workers, waits for observable effects, runs
post-condition programs and tears everything down. Stages form a dependency
graph with memoized outcomes, so requesting a late stage runs its
prerequisites first and shares their already-started services.

Import-time side effects are forbidden here (no config loading, no logging init).
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
