"""
Typed settings access.

A closed set of accessors (string, bool, int, duration, JSON blob) reads dotted
paths from a validated config mapping; ``ToolkitSettings`` is built once from
them and passed to constructors explicitly.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Literal

from bepoz_toolkit.config.loader import load_config

DurationUnit = Literal["seconds", "minutes", "days"]


class SettingsError(KeyError):
    """Raised when a setting is missing or has the wrong type."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "settings error"


def get_str(config: Mapping[str, object], path: str) -> str:
    value = _lookup(config, path)
    if not isinstance(value, str):
        raise SettingsError(f"{path}: expected string, got {type(value).__name__}")
    return value


def get_bool(config: Mapping[str, object], path: str) -> bool:
    value = _lookup(config, path)
    if not isinstance(value, bool):
        raise SettingsError(f"{path}: expected boolean, got {type(value).__name__}")
    return value


def get_int(config: Mapping[str, object], path: str) -> int:
    value = _lookup(config, path)
    if isinstance(value, bool) or not isinstance(value, int):
        raise SettingsError(f"{path}: expected integer, got {type(value).__name__}")
    return value


def get_duration(
    config: Mapping[str, object], path: str, *, unit: DurationUnit = "seconds"
) -> timedelta:
    value = _lookup(config, path)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SettingsError(f"{path}: expected number of {unit}, got {type(value).__name__}")
    return timedelta(**{unit: float(value)})


def get_json(config: Mapping[str, object], path: str) -> Any:
    """Return a JSON-compatible blob; strings holding JSON text are decoded."""
    value = _lookup(config, path)
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError as exc:
            raise SettingsError(f"{path}: invalid JSON ({exc})") from exc
    try:
        return json.loads(json.dumps(value))
    except (TypeError, ValueError) as exc:
        raise SettingsError(f"{path}: value is not JSON-compatible") from exc


@dataclass(frozen=True, slots=True)
class ToolkitSettings:
    """Process-wide settings, loaded once per invocation."""

    cache_dir: Path
    state_db: Path
    log_dir: Path
    catalog_base_url: str
    manifest_path: str
    catalog_timeout: timedelta
    catalog_token: str | None
    cache_ttl: timedelta
    connect_timeout: timedelta
    default_database_port: int
    runtime_probe_timeout: timedelta
    runtime: str
    execution_policy: str
    stop_grace: timedelta
    deadline: timedelta | None
    block_on_preflight_failure: bool
    blocking_checks: tuple[str, ...] | None
    history_retention: timedelta | None
    log_level: str
    redact_secrets: bool
    notification_capacity: int
    raw: Mapping[str, object]

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, object],
        *,
        environ: Mapping[str, str] | None = None,
    ) -> ToolkitSettings:
        env_map = os.environ if environ is None else environ
        token = env_map.get(get_str(config, "catalog.token_env"), "").strip() or None
        deadline = get_duration(config, "execution.deadline_seconds")
        retention = get_duration(config, "history.retention_days", unit="days")
        checks = get_json(config, "execution.blocking_checks")
        if not isinstance(checks, list):
            raise SettingsError("execution.blocking_checks: expected list of check names")
        return cls(
            cache_dir=Path(get_str(config, "paths.cache_dir")),
            state_db=Path(get_str(config, "paths.state_db")),
            log_dir=Path(get_str(config, "paths.log_dir")),
            catalog_base_url=get_str(config, "catalog.base_url"),
            manifest_path=get_str(config, "catalog.manifest_path"),
            catalog_timeout=get_duration(config, "catalog.timeout_seconds"),
            catalog_token=token,
            cache_ttl=get_duration(config, "cache.expiration_minutes", unit="minutes"),
            connect_timeout=get_duration(config, "preflight.connect_timeout_seconds"),
            default_database_port=get_int(config, "preflight.default_database_port"),
            runtime_probe_timeout=get_duration(config, "preflight.runtime_probe_timeout_seconds"),
            runtime=get_str(config, "execution.runtime"),
            execution_policy=get_str(config, "execution.execution_policy"),
            stop_grace=get_duration(config, "execution.stop_grace_seconds"),
            deadline=deadline if deadline > timedelta(0) else None,
            block_on_preflight_failure=get_bool(config, "execution.block_on_preflight_failure"),
            blocking_checks=tuple(str(name) for name in checks) or None,
            history_retention=retention if retention > timedelta(0) else None,
            log_level=get_str(config, "observability.log_level"),
            redact_secrets=get_bool(config, "observability.redact_secrets"),
            notification_capacity=get_int(config, "observability.notification_capacity"),
            raw=config,
        )

    @classmethod
    def load(
        cls,
        config_path: str | Path | None = None,
        *,
        profile: str | None = None,
        cli_overrides: Mapping[str, object] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> ToolkitSettings:
        config = load_config(
            config_path, profile=profile, cli_overrides=cli_overrides, environ=environ
        )
        return cls.from_config(config, environ=environ)


def _lookup(config: Mapping[str, object], path: str) -> object:
    cursor: object = config
    for part in path.split("."):
        if not isinstance(cursor, Mapping) or part not in cursor:
            raise SettingsError(f"{path}: setting is not defined")
        cursor = cursor[part]
    return cursor


__all__ = [
    "SettingsError",
    "ToolkitSettings",
    "get_bool",
    "get_duration",
    "get_int",
    "get_json",
    "get_str",
]
