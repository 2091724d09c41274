"""UI package exports for the CLI and its text rendering."""

from ingest_harness.ui.cli import CLIError, build_parser, run_cli
from ingest_harness.ui.render import CLIRenderer, create_renderer

__all__ = [
    "CLIError",
    "CLIRenderer",
    "build_parser",
    "create_renderer",
    "run_cli",
]
