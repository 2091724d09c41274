"""
ingest-harness — runtime config loader.

Purpose
- Build the effective config from defaults, ``harness.toml``, ``INGEST_HARNESS_``
  environment variables and CLI overrides, in that order of increasing precedence.

What is included in this file
- TOML loading via ``tomllib``.
- Environment bindings derived from the scalar leaves of the default config.
- Path fields resolved against the config file's directory.
- Redacted JSON dump for ``ingest-harness config``.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from string import Template
from typing import Any, Final

from ingest_harness.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)
from ingest_harness.constants import DEFAULT_CONFIG_FILE, ENV_PREFIX

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})


class ConfigLoadError(ValueError):
    """Raised when the config file cannot be read or an override cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config.

    Without ``config_path`` a ``harness.toml`` in the working directory is used
    when present; an explicit path must exist.
    """

    env = dict(os.environ if environ is None else environ)
    if config_path is None:
        path = (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    else:
        path = Path(config_path).expanduser().resolve()

    file_payload = _read_toml(path, required=config_path is not None)
    merged = assert_valid_config(merge_config(default_config(), file_payload))
    merged = merge_config(merged, _env_overrides(env))
    merged = merge_config(merged, _cli_overrides(cli_overrides or {}))
    merged = assert_valid_config(merged)

    for field_path in PATH_FIELDS:
        _resolve_path_field(merged, field_path, path.parent, env)
    return assert_valid_config(merged)


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Deterministic JSON of the redacted config."""
    return json.dumps(redact_config(config), sort_keys=True, indent=2, ensure_ascii=False)


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for path, default in _scalar_leaves(default_config()):
        env_name = ENV_PREFIX + "_".join(part.upper() for part in path)
        raw = environ.get(env_name)
        if raw is None:
            continue
        coerce = _COERCERS[type(default)]
        try:
            value = coerce(raw.strip())
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {'.'.join(path)}: {exc}") from exc
        _assign(overrides, path, value)
    return overrides


def _scalar_leaves(
    payload: Mapping[str, object], prefix: tuple[str, ...] = ()
) -> Iterator[tuple[tuple[str, ...], object]]:
    for key in sorted(payload):
        value = payload[key]
        if isinstance(value, Mapping):
            yield from _scalar_leaves(value, (*prefix, key))
        elif type(value) in _COERCERS:
            yield (*prefix, key), value


def _to_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError(f"expected a boolean (true/false/yes/no/on/off/1/0), got {raw!r}")


def _to_int(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"expected an integer, got {raw!r}") from None


def _to_float(raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"expected a number, got {raw!r}") from None


_COERCERS: Final[dict[type, Callable[[str], object]]] = {
    bool: _to_bool,
    int: _to_int,
    float: _to_float,
    str: str,
}


def _cli_overrides(overrides: Mapping[str, object]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for dotted, value in sorted(overrides.items()):
        path = tuple(part for part in dotted.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        _assign(payload, path, value)
    return payload


def _assign(target: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    for part in path[:-1]:
        target = target.setdefault(part, {})
    target[path[-1]] = value


def _resolve_path_field(
    config: dict[str, Any], path: tuple[str, ...], base_dir: Path, environ: Mapping[str, str]
) -> None:
    section = config
    for part in path[:-1]:
        section = section[part]
    raw = section.get(path[-1])
    if not isinstance(raw, str) or not raw:
        return
    candidate = Path(Template(raw).safe_substitute(environ)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    section[path[-1]] = Path(os.path.normpath(candidate)).as_posix()


__all__ = ["ConfigLoadError", "dump_effective_config", "load_config"]
