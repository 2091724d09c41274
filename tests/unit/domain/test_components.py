"""Unit tests for component definitions and the registry."""

from __future__ import annotations

import pytest

from ingest_harness.domain.components import (
    Component,
    ComponentRegistry,
    ComponentRole,
    LifecycleKind,
)
from ingest_harness.errors import UnknownComponentError


def _registry() -> ComponentRegistry:
    return ComponentRegistry.from_components(
        [
            Component("nsq_service", LifecycleKind.SERVICE, ComponentRole.BROKER),
            Component("apt_fetch", LifecycleKind.SERVICE),
            Component("dpn_cluster", LifecycleKind.SPECIAL, buildable=False),
            Component("apt_queue", LifecycleKind.APPLICATION),
        ]
    )


def test_default_command_template_appends_flags() -> None:
    component = Component("apt_queue_fixity", "application", flags=("-maxfiles=10",))

    assert component.lifecycle_kind is LifecycleKind.APPLICATION
    assert component.command_template() == (
        "{bin_dir}/{name}",
        "-config={worker_config}",
        "-maxfiles=10",
    )


def test_explicit_command_replaces_default_invocation() -> None:
    component = Component(
        "nsq_service",
        LifecycleKind.SERVICE,
        ComponentRole.BROKER,
        command=("{bin_dir}/nsq_service", "-config={nsq_config}"),
    )

    assert component.command_template() == ("{bin_dir}/nsq_service", "-config={nsq_config}")
    assert component.is_infrastructure
    assert component.is_service


def test_component_name_is_required() -> None:
    with pytest.raises(ValueError, match="name"):
        Component("  ", LifecycleKind.SERVICE)


def test_unknown_lifecycle_kind_is_rejected() -> None:
    with pytest.raises(ValueError):
        Component("apt_fetch", "daemon")  # type: ignore[arg-type]


def test_env_overrides_are_a_mapping() -> None:
    component = Component("apt_fetch", LifecycleKind.SERVICE, env=(("GOMAXPROCS", "2"),))

    assert component.env_overrides() == {"GOMAXPROCS": "2"}


def test_registry_preserves_registration_order_and_splits_special() -> None:
    registry = _registry()

    assert registry.names() == ("nsq_service", "apt_fetch", "dpn_cluster", "apt_queue")
    assert [item.name for item in registry.supervised()] == [
        "nsq_service",
        "apt_fetch",
        "apt_queue",
    ]
    assert [item.name for item in registry.special()] == ["dpn_cluster"]
    assert "apt_fetch" in registry
    assert len(registry) == 4


def test_registry_rejects_duplicates_and_unknown_lookups() -> None:
    registry = _registry()

    with pytest.raises(ValueError, match="already registered"):
        registry.register(Component("apt_fetch", LifecycleKind.SERVICE))
    with pytest.raises(UnknownComponentError):
        registry.get("apt_missing")
