"""Command-line interface router for ingest-harness."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Final

import structlog

from ingest_harness.catalog import Catalog, load_catalog
from ingest_harness.config import (
    ConfigLoadError,
    ConfigValidationError,
    HarnessConfig,
    dump_effective_config,
    load_config,
)
from ingest_harness.engine.orchestrator import Orchestrator
from ingest_harness.errors import CatalogError
from ingest_harness.observability import setup_logging
from ingest_harness.ui.render import CLIRenderer, create_renderer

COMMANDS: Final[frozenset[str]] = frozenset({"run", "config"})
_HELP_FLAGS: Final[frozenset[str]] = frozenset({"-h", "--help"})


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 2

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse router; ``run`` is implied when no command is given."""

    parser = argparse.ArgumentParser(
        prog="ingest-harness",
        description=(
            "Build, start, seed and verify the preservation pipeline end to end.\n\n"
            "Common workflows:\n"
            "  ingest-harness apt_fixity       Every ingest-side operation\n"
            "  ingest-harness dpn_replicate    Replication against a local cluster\n"
            "  ingest-harness units            Unit suite only, no services\n"
            "  ingest-harness --list           Show every stage\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to harness TOML config (default: ./harness.toml if present).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Mirror the run log to stderr and keep passing test output.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Run one stage and its prerequisites",
        description="Run one stage, then stop every process and print the results.",
    )
    run_parser.add_argument("stage", nargs="?", default=None, help="Stage to run.")
    run_parser.add_argument(
        "--init-cluster",
        "-i",
        action="store_true",
        default=False,
        help="Run the replication cluster setup and migration scripts before starting it.",
    )
    run_parser.add_argument(
        "--list",
        dest="list_stages",
        action="store_true",
        default=False,
        help="List stages with their prerequisites and exit.",
    )
    run_parser.add_argument(
        "--time-scale",
        type=float,
        default=None,
        help="Multiplier for fixed settle pauses (0 disables them).",
    )
    run_parser.add_argument(
        "--run-timeout",
        type=float,
        default=None,
        help="Seconds after which no further stage may begin (0 = no deadline).",
    )
    run_parser.set_defaults(handler=_cmd_run)

    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show effective configuration (redacted)",
        description="Display the effective config after merging defaults, file and env.",
    )
    config_parser.set_defaults(handler=_cmd_config)
    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    args = list(sys.argv[1:] if argv is None else argv)
    if not args or (args[0] not in COMMANDS and args[0] not in _HELP_FLAGS):
        args.insert(0, "run")
    namespace = parser.parse_args(args)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_run(args: argparse.Namespace) -> int:
    renderer = create_renderer(verbose=bool(args.verbose))
    config = _load_harness_config(args)
    catalog = _load_catalog(config)

    if args.list_stages:
        _render_stage_list(renderer, catalog)
        return 0

    stage = args.stage
    if stage is None or stage not in catalog.stage_names():
        if stage is not None:
            renderer.note(f"Unknown stage: {stage}")
        _render_usage(renderer, catalog)
        return 2

    run_id = f"{datetime.now(UTC).strftime('%Y%m%dT%H%M%SZ')}-{stage}"
    obs = config.observability
    run_log = setup_logging(
        run_id=run_id,
        log_dir=obs.log_dir,
        level=obs.log_level,
        mirror_to_stderr=obs.log_to_stdout or renderer.verbose,
        redact_secrets=obs.redact_secrets,
    )
    logger = structlog.get_logger("ingest_harness.run")
    try:
        orchestrator = Orchestrator.from_config(
            config,
            catalog,
            init_cluster=bool(args.init_cluster),
            verbose=renderer.verbose,
            echo=renderer.raw,
            logger=logger,
        )
        orchestrator.prepare()
        passed = orchestrator.run(stage, more_stages_follow=False)
        logger.info("run_finished", stage=stage, passed=passed)
    finally:
        run_log.close()

    renderer.note(f"Run log: {run_log.path}")
    return 0 if passed else 1


def _cmd_config(args: argparse.Namespace) -> int:
    renderer = create_renderer(verbose=bool(args.verbose))
    try:
        payload = load_config(args.config_path)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc)) from exc
    renderer.text(dump_effective_config(payload))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_harness_config(args: argparse.Namespace) -> HarnessConfig:
    overrides: dict[str, object] = {}
    time_scale = getattr(args, "time_scale", None)
    if time_scale is not None:
        overrides["timing.time_scale"] = time_scale
    run_timeout = getattr(args, "run_timeout", None)
    if run_timeout is not None:
        overrides["timing.run_timeout_seconds"] = run_timeout
    try:
        return HarnessConfig.load(args.config_path, cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc)) from exc


def _load_catalog(config: HarnessConfig) -> Catalog:
    try:
        return load_catalog(config.paths.catalog)
    except CatalogError as exc:
        raise CLIError(str(exc)) from exc


def _render_stage_list(renderer: CLIRenderer, catalog: Catalog) -> None:
    graph = catalog.graph()
    rows = [
        (
            stage.name,
            ", ".join(graph.prerequisites(stage.name, transitive=True)) or "-",
            stage.description,
        )
        for stage in catalog.stages
    ]
    renderer.table(("Stage", "Runs first", "Description"), rows)


def _render_usage(renderer: CLIRenderer, catalog: Catalog) -> None:
    renderer.note("Usage: ingest-harness [-v] [-i] STAGE")
    renderer.note("")
    renderer.note("Valid stages:")
    width = max((len(name) for name in catalog.stage_names()), default=0)
    for stage in sorted(catalog.stages, key=lambda item: item.name):
        renderer.note(f"  {stage.name:<{width}}  {stage.description}")


__all__ = ["CLIError", "build_parser", "run_cli"]
