"""
ingest-harness — component and stage catalog.

Purpose
- Load the declarative catalog (packaged ``pipeline.yaml`` or a configured
  file) into :class:`Component` and :class:`Stage` objects.

What is included in this file
- YAML parsing via ``yaml.safe_load``.
- Structural validation with dotted-path error messages.
- Construction of stage actions and checks from their declarative form.
- Reference validation: components used by stages exist, build lists only name
  buildable components, prerequisites exist and form a DAG.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import TYPE_CHECKING

import yaml

from ingest_harness.constants import CATALOG_SCHEMA_VERSION
from ingest_harness.domain.components import (
    Component,
    ComponentRegistry,
    ComponentRole,
    LifecycleKind,
)
from ingest_harness.domain.stages import Check, CheckFn, Stage, StageAction, StartStep
from ingest_harness.engine.graph import CycleError, StageGraph
from ingest_harness.errors import CatalogError, UnknownStageError

if TYPE_CHECKING:
    from ingest_harness.engine.context import StageContext

BeforeStep = Callable[["StageContext"], None]

_COMPONENT_KEYS = frozenset(
    {
        "name",
        "kind",
        "role",
        "description",
        "command",
        "flags",
        "cwd",
        "env",
        "buildable",
        "source_dir",
        "log_file",
        "allow_failure",
    }
)
_STAGE_KEYS = frozenset(
    {"description", "prerequisites", "build", "actions", "start", "checks", "terminal_checks"}
)
_CHECK_KEYS = frozenset({"name", "description", "post_test", "directory", "unit_tests", "before"})
_ACTIONS = ("reset_backend", "load_fixtures", "init_cluster", "pause")


@dataclass(frozen=True, slots=True)
class Catalog:
    """Validated components and stages, in declaration order."""

    components: tuple[Component, ...]
    stages: tuple[Stage, ...]
    source: str = "<memory>"

    def registry(self) -> ComponentRegistry:
        return ComponentRegistry.from_components(self.components)

    def graph(self) -> StageGraph:
        return StageGraph.from_stages(self.stages)

    def stage_names(self) -> tuple[str, ...]:
        return tuple(stage.name for stage in self.stages)


def default_catalog_text() -> str:
    return (
        resources.files("ingest_harness.catalog")
        .joinpath("pipeline.yaml")
        .read_text(encoding="utf-8")
    )


def load_catalog(path: Path | str | None = None) -> Catalog:
    """Load ``path``, or the packaged pipeline catalog when ``path`` is ``None``."""
    if path is None:
        return parse_catalog_text(default_catalog_text(), source="pipeline.yaml")
    catalog_path = Path(path)
    try:
        text = catalog_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CatalogError(f"unable to read catalog {catalog_path}: {exc}") from exc
    return parse_catalog_text(text, source=str(catalog_path))


def parse_catalog_text(text: str, *, source: str = "<memory>") -> Catalog:
    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise CatalogError(f"invalid YAML in {source}: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise CatalogError(f"{source}: catalog must be a mapping")
    return parse_catalog(payload, source=source)


def parse_catalog(payload: Mapping[str, object], *, source: str = "<memory>") -> Catalog:
    version = payload.get("schema_version")
    if version != CATALOG_SCHEMA_VERSION:
        raise CatalogError(
            f"{source}: schema_version must be {CATALOG_SCHEMA_VERSION}, got {version!r}"
        )
    unknown = sorted(set(payload) - {"schema_version", "components", "stages"})
    if unknown:
        raise CatalogError(f"{source}: unknown top-level keys: {unknown}")

    raw_components = payload.get("components") or []
    if not isinstance(raw_components, list):
        raise CatalogError(f"{source}: components must be a list")
    components = tuple(
        _parse_component(item, f"components[{index}]") for index, item in enumerate(raw_components)
    )
    try:
        registry = ComponentRegistry.from_components(components)
    except ValueError as exc:
        raise CatalogError(f"{source}: {exc}") from exc

    raw_stages = payload.get("stages") or {}
    if not isinstance(raw_stages, Mapping):
        raise CatalogError(f"{source}: stages must be a mapping of name -> stage")
    stages = tuple(
        _parse_stage(str(name), body, f"stages.{name}", registry)
        for name, body in raw_stages.items()
    )

    try:
        StageGraph.from_stages(stages)
    except (CycleError, UnknownStageError) as exc:
        raise CatalogError(f"{source}: {exc}") from exc

    return Catalog(components=components, stages=stages, source=source)


# ------------------------------------------------------------------ components


def _parse_component(raw: object, path: str) -> Component:
    body = _as_mapping(raw, path)
    _reject_unknown(body, _COMPONENT_KEYS, path)
    name = _as_name(body.get("name"), f"{path}.name")
    try:
        kind = LifecycleKind(str(body.get("kind", "")))
    except ValueError as exc:
        allowed = ", ".join(item.value for item in LifecycleKind)
        raise CatalogError(f"{path}.kind must be one of: {allowed}") from exc
    try:
        role = ComponentRole(str(body.get("role", ComponentRole.WORKER.value)))
    except ValueError as exc:
        allowed = ", ".join(item.value for item in ComponentRole)
        raise CatalogError(f"{path}.role must be one of: {allowed}") from exc

    env = _as_mapping(body.get("env") or {}, f"{path}.env")
    return Component(
        name=name,
        lifecycle_kind=kind,
        role=role,
        description=str(body.get("description", "")),
        command=_as_str_list(body.get("command"), f"{path}.command"),
        flags=_as_str_list(body.get("flags"), f"{path}.flags"),
        cwd=_optional_str(body.get("cwd"), f"{path}.cwd"),
        env=tuple((str(key), str(value)) for key, value in env.items()),
        buildable=bool(body.get("buildable", True)),
        source_dir=_optional_str(body.get("source_dir"), f"{path}.source_dir"),
        log_file=_optional_str(body.get("log_file"), f"{path}.log_file"),
        allow_failure=bool(body.get("allow_failure", False)),
    )


# ---------------------------------------------------------------------- stages


def _parse_stage(name: str, raw: object, path: str, registry: ComponentRegistry) -> Stage:
    body = _as_mapping(raw or {}, path)
    _reject_unknown(body, _STAGE_KEYS, path)

    build = _as_str_list(body.get("build"), f"{path}.build")
    for index, component_name in enumerate(build):
        component = _require_component(registry, component_name, f"{path}.build[{index}]")
        if not component.buildable:
            raise CatalogError(f"{path}.build[{index}]: {component_name} is not buildable")

    actions = tuple(
        _parse_action(item, f"{path}.actions[{index}]")
        for index, item in enumerate(_as_list(body.get("actions"), f"{path}.actions"))
    )
    start = tuple(
        _parse_start_step(item, f"{path}.start[{index}]", registry)
        for index, item in enumerate(_as_list(body.get("start"), f"{path}.start"))
    )
    checks = tuple(
        _parse_check(item, f"{path}.checks[{index}]", registry)
        for index, item in enumerate(_as_list(body.get("checks"), f"{path}.checks"))
    )
    try:
        return Stage(
            name=name,
            description=str(body.get("description", "")),
            prerequisites=_as_str_list(body.get("prerequisites"), f"{path}.prerequisites"),
            build=build,
            actions=actions,
            start=start,
            checks=checks,
            terminal_checks=_as_str_list(body.get("terminal_checks"), f"{path}.terminal_checks"),
        )
    except ValueError as exc:
        raise CatalogError(f"{path}: {exc}") from exc


def _parse_action(raw: object, path: str) -> StageAction:
    if isinstance(raw, str):
        action, argument = raw, None
    else:
        body = _as_mapping(raw, path)
        if len(body) != 1:
            raise CatalogError(f"{path} must have exactly one key")
        ((action, argument),) = body.items()

    if action == "reset_backend":
        return StageAction(action, lambda context: context.require_backend().reset_state())
    if action == "load_fixtures":
        return StageAction(action, lambda context: context.require_backend().load_fixtures())
    if action == "init_cluster":
        return StageAction(action, lambda context: context.require_cluster().initialize())
    if action == "pause":
        seconds = _as_seconds(argument, f"{path}.pause")
        return StageAction(action, lambda context: context.pause(seconds))
    raise CatalogError(f"{path}: unknown action {action!r}; expected one of: {', '.join(_ACTIONS)}")


def _parse_start_step(raw: object, path: str, registry: ComponentRegistry) -> StartStep:
    if isinstance(raw, str):
        component_name, settle = raw, 0.0
    else:
        body = _as_mapping(raw, path)
        _reject_unknown(body, frozenset({"component", "settle"}), path)
        component_name = _as_name(body.get("component"), f"{path}.component")
        settle = _as_seconds(body.get("settle", 0), f"{path}.settle")
    _require_component(registry, component_name, path)
    return StartStep(component=component_name, settle_seconds=settle)


def _parse_check(raw: object, path: str, registry: ComponentRegistry) -> Check:
    body = _as_mapping(raw, path)
    _reject_unknown(body, _CHECK_KEYS, path)
    name = _as_name(body.get("name"), f"{path}.name")
    description = str(body.get("description", ""))

    if body.get("unit_tests"):
        if "post_test" in body:
            raise CatalogError(f"{path}: post_test and unit_tests are mutually exclusive")
        return Check(name, _unit_tests_check(), description)

    test_file = _as_name(body.get("post_test"), f"{path}.post_test")
    directory = _optional_str(body.get("directory"), f"{path}.directory")
    before = tuple(
        _parse_before_step(item, f"{path}.before[{index}]", registry)
        for index, item in enumerate(_as_list(body.get("before"), f"{path}.before"))
    )
    return Check(name, _post_test_check(test_file, directory, before), description or test_file)


def _parse_before_step(raw: object, path: str, registry: ComponentRegistry) -> BeforeStep:
    body = _as_mapping(raw, path)
    if len(body) != 1:
        raise CatalogError(f"{path} must have exactly one key")
    ((kind, argument),) = body.items()

    if kind == "start":
        component_name = _as_name(argument, f"{path}.start")
        _require_component(registry, component_name, f"{path}.start")
        return lambda context: context.start(component_name)
    if kind == "pause":
        seconds = _as_seconds(argument, f"{path}.pause")
        return lambda context: context.pause(seconds)
    if kind == "wait_for":
        wait_args = _as_mapping(argument, f"{path}.wait_for")
        _reject_unknown(wait_args, frozenset({"source", "pattern", "timeout"}), f"{path}.wait_for")
        source = _as_name(wait_args.get("source"), f"{path}.wait_for.source")
        pattern = _as_name(wait_args.get("pattern"), f"{path}.wait_for.pattern")
        timeout = (
            _as_seconds(wait_args["timeout"], f"{path}.wait_for.timeout")
            if "timeout" in wait_args
            else None
        )

        def wait(context: StageContext) -> None:
            context.wait_for(source, pattern, timeout=timeout)

        return wait
    raise CatalogError(f"{path}: unknown step {kind!r}; expected start, pause or wait_for")


def _post_test_check(
    test_file: str, directory: str | None, before: Sequence[BeforeStep]
) -> CheckFn:
    def check(context: StageContext) -> bool:
        for step in before:
            step(context)
        return context.post_tests.run_post_test(test_file, directory=directory)

    return check


def _unit_tests_check() -> CheckFn:
    def check(context: StageContext) -> bool:
        return context.post_tests.run_unit_tests()

    return check


# --------------------------------------------------------------------- helpers


def _require_component(registry: ComponentRegistry, name: str, path: str) -> Component:
    if name not in registry:
        raise CatalogError(f"{path}: unknown component {name!r}")
    return registry.get(name)


def _as_mapping(value: object, path: str) -> Mapping[str, object]:
    if not isinstance(value, Mapping):
        raise CatalogError(f"{path} must be a mapping")
    return value


def _as_list(value: object, path: str) -> list[object]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise CatalogError(f"{path} must be a list")
    return value


def _as_str_list(value: object, path: str) -> tuple[str, ...]:
    items = _as_list(value, path)
    return tuple(_as_name(item, f"{path}[{index}]") for index, item in enumerate(items))


def _as_name(value: object, path: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise CatalogError(f"{path} must be a non-empty string")
    return value.strip()


def _optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_name(value, path)


def _as_seconds(value: object, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise CatalogError(f"{path} must be a non-negative number of seconds")
    return float(value)


def _reject_unknown(body: Mapping[str, object], allowed: frozenset[str], path: str) -> None:
    unknown = sorted(str(key) for key in body if key not in allowed)
    if unknown:
        raise CatalogError(f"{path}: unknown keys {unknown}")


__all__ = [
    "Catalog",
    "default_catalog_text",
    "load_catalog",
    "parse_catalog",
    "parse_catalog_text",
]
