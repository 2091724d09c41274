"""Deployable pipeline components and their registry."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import StrEnum

from ingest_harness.errors import UnknownComponentError

DEFAULT_WORKER_COMMAND: tuple[str, ...] = ("{bin_dir}/{name}", "-config={worker_config}")


class LifecycleKind(StrEnum):
    """How the supervisor treats a component once started."""

    SERVICE = "service"
    APPLICATION = "application"
    SPECIAL = "special"


class ComponentRole(StrEnum):
    """Shutdown tier. Workers stop before shared infrastructure."""

    WORKER = "worker"
    BROKER = "broker"
    BACKEND = "backend"


@dataclass(frozen=True, slots=True)
class Component:
    """A named unit of deployable work.

    ``command`` and ``cwd`` are templates rendered against the harness paths
    (``{bin_dir}``, ``{log_dir}``, ``{exchange_root}``, ``{worker_config}`` ...)
    plus ``{name}``. An empty command means the default worker invocation
    ``<bin_dir>/<name> -config=<worker_config>``.
    """

    name: str
    lifecycle_kind: LifecycleKind
    role: ComponentRole = ComponentRole.WORKER
    description: str = ""
    command: tuple[str, ...] = ()
    flags: tuple[str, ...] = ()
    cwd: str | None = None
    env: tuple[tuple[str, str], ...] = ()
    buildable: bool = True
    source_dir: str | None = None
    log_file: str | None = None
    allow_failure: bool = False

    def __post_init__(self) -> None:
        name = self.name.strip() if isinstance(self.name, str) else ""
        if not name:
            raise ValueError("Component.name must be a non-empty string")
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "lifecycle_kind", LifecycleKind(self.lifecycle_kind))
        object.__setattr__(self, "role", ComponentRole(self.role))
        object.__setattr__(self, "command", tuple(self.command))
        object.__setattr__(self, "flags", tuple(self.flags))
        object.__setattr__(self, "env", tuple((str(k), str(v)) for k, v in self.env))

    @property
    def is_special(self) -> bool:
        return self.lifecycle_kind is LifecycleKind.SPECIAL

    @property
    def is_service(self) -> bool:
        return self.lifecycle_kind is LifecycleKind.SERVICE

    @property
    def is_infrastructure(self) -> bool:
        return self.role is not ComponentRole.WORKER

    def command_template(self) -> tuple[str, ...]:
        base = self.command if self.command else DEFAULT_WORKER_COMMAND
        return (*base, *self.flags)

    def env_overrides(self) -> dict[str, str]:
        return dict(self.env)


@dataclass(slots=True)
class ComponentRegistry:
    """Insertion-ordered component lookup keyed by unique name."""

    _components: dict[str, Component] = field(default_factory=dict)

    @classmethod
    def from_components(cls, components: Iterable[Component]) -> ComponentRegistry:
        registry = cls()
        for component in components:
            registry.register(component)
        return registry

    def register(self, component: Component) -> None:
        if component.name in self._components:
            raise ValueError(f"component {component.name!r} is already registered")
        self._components[component.name] = component

    def get(self, name: str) -> Component:
        component = self._components.get(name)
        if component is None:
            raise UnknownComponentError(name, self.names())
        return component

    def names(self) -> tuple[str, ...]:
        return tuple(self._components)

    def supervised(self) -> tuple[Component, ...]:
        """Every non-Special component, in registration order."""
        return tuple(item for item in self._components.values() if not item.is_special)

    def special(self) -> tuple[Component, ...]:
        return tuple(item for item in self._components.values() if item.is_special)

    def as_mapping(self) -> Mapping[str, Component]:
        return dict(self._components)

    def __contains__(self, name: object) -> bool:
        return name in self._components

    def __iter__(self) -> Iterator[Component]:
        return iter(tuple(self._components.values()))

    def __len__(self) -> int:
        return len(self._components)


__all__ = [
    "DEFAULT_WORKER_COMMAND",
    "Component",
    "ComponentRegistry",
    "ComponentRole",
    "LifecycleKind",
]
