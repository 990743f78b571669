"""
bepoz-toolkit — runtime config loader.

File: src/bepoz_toolkit/config/loader.py

Purpose
- Resolve the effective configuration for one toolkit invocation.

Functional requirements
- Layers, lowest first: defaults, ``toolkit.toml``, profile overlay, ``BEPOZ_TOOLKIT_*`` env, CLI.
- Env values are coerced to the type of the setting they replace.
- Path settings resolve against the directory holding the config file.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from bepoz_toolkit.config.schema import (
    PATH_FIELDS,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "toolkit.toml"
ENV_PREFIX: Final[str] = "BEPOZ_TOOLKIT_"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})
_NOT_ENV_BOUND: Final[frozenset[str]] = frozenset({"profiles", "meta"})


class ConfigLoadError(ValueError):
    """The config file or an override could not be read or coerced."""


def _as_bool(text: str) -> bool:
    lowered = text.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError(text)


# Checked in order: bool before int because ``True`` is an ``int``.
_COERCERS: Final[tuple[tuple[type, Callable[[str], object], str], ...]] = (
    (bool, _as_bool, "a boolean (true/false/1/0/yes/no/on/off)"),
    (int, int, "an integer"),
    (float, float, "a number"),
    (str, str, "a string"),
)


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated, path-normalized effective config.

    ``config_path=None`` reads ``toolkit.toml`` from the working directory when it
    exists; an explicit path must exist. ``environ`` defaults to ``os.environ``.
    """

    env = os.environ if environ is None else environ
    path = (
        Path.cwd() / DEFAULT_CONFIG_FILE
        if config_path is None
        else Path(config_path).expanduser()
    ).resolve()

    config = assert_valid_config(merge_config(default_config(), _read_toml(path, config_path is not None)))

    active = profile if profile is not None else env.get(f"{ENV_PREFIX}PROFILE")
    if active is not None and active.strip():
        config = apply_profile_overlay(config, active.strip())

    config = merge_config(config, _env_layer(config, env))
    config = merge_config(config, _cli_layer(cli_overrides or {}))
    return normalize_paths(assert_valid_config(config), base_dir=path.parent)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Copy of ``config`` with every path setting absolute, normalized and POSIX-style."""

    result = merge_config({}, config)
    for field in PATH_FIELDS:
        *parents, leaf = field
        section = _walk(result, tuple(parents))
        if not isinstance(section, dict) or not isinstance(section.get(leaf), str):
            continue
        candidate = Path(os.path.expandvars(section[leaf])).expanduser()
        if not candidate.is_absolute():
            candidate = base_dir / candidate
        section[leaf] = Path(os.path.normpath(candidate)).as_posix()
    return result


def dump_effective_config(config: Mapping[str, object]) -> str:
    return json.dumps(redact_config(config), sort_keys=True, indent=2, ensure_ascii=False)


def env_name_for_path(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in path)


def _read_toml(path: Path, required: bool) -> dict[str, Any]:
    try:
        raw = path.read_bytes()
    except FileNotFoundError as exc:
        if required:
            raise ConfigLoadError(f"config file not found: {path}") from exc
        return {}
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc
    try:
        return tomllib.loads(raw.decode("utf-8"))
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc


def _leaves(node: Mapping[str, object], prefix: tuple[str, ...] = ()) -> Iterator[tuple[tuple[str, ...], object]]:
    for key in sorted(node):
        value = node[key]
        if isinstance(value, Mapping):
            yield from _leaves(value, (*prefix, key))
        else:
            yield (*prefix, key), value


def _env_layer(config: Mapping[str, object], env: Mapping[str, str]) -> dict[str, Any]:
    """Overrides for every scalar setting that has a matching environment variable."""

    layer: dict[str, Any] = {}
    for path, current in _leaves(config):
        if path[0] in _NOT_ENV_BOUND:
            continue
        name = env_name_for_path(path)
        if name not in env:
            continue
        for kind, coerce, label in _COERCERS:
            if isinstance(current, kind):
                text = env[name].strip()
                try:
                    value = coerce(text)
                except ValueError as exc:
                    raise ConfigLoadError(
                        f"{name} -> {'.'.join(path)} must be {label}, got {text!r}"
                    ) from exc
                _assign(layer, path, value)
                break
    return layer


def _cli_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted in sorted(overrides):
        path = tuple(filter(None, dotted.split(".")))
        if len(path) < 2:
            raise ConfigLoadError(f"CLI override key must be 'section.field', got {dotted!r}")
        _assign(layer, path, overrides[dotted])
    return layer


def _assign(target: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    for part in path[:-1]:
        child = target.get(part)
        if not isinstance(child, dict):
            child = target[part] = {}
        target = child
    target[path[-1]] = value


def _walk(node: object, path: tuple[str, ...]) -> object | None:
    for part in path:
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return node


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "env_name_for_path",
    "load_config",
    "normalize_paths",
]
