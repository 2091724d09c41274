"""Module entrypoint for ``python -m ingest_harness``."""

from __future__ import annotations

from ingest_harness.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
