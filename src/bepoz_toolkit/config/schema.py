"""
bepoz-toolkit — configuration schema and validation.

File: src/bepoz_toolkit/config/schema.py

Purpose
- Built-in defaults, named profiles and the field rules every config layer must satisfy.

Functional requirements
- Validation walks the whole document and reports every problem with its dotted path.
- Profiles are partial overlays; they are checked with the same field rules.
- Credentials are referenced by ``*_env`` variable names and never stored inline.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from bepoz_toolkit.constants import (
    CACHE_DIR,
    CONFIG_SCHEMA_VERSION,
    DEFAULT_CACHE_TTL_MINUTES,
    DEFAULT_CATALOG_URL,
    DEFAULT_CONNECT_TIMEOUT_SECONDS,
    DEFAULT_DATABASE_PORT,
    LOG_DIR,
    MANIFEST_PATH,
    STATE_DB_PATH,
)
from bepoz_toolkit.preflight.models import ALL_CHECKS

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
RUNTIMES: Final[tuple[str, ...]] = ("powershell", "python")
EXECUTION_POLICIES: Final[tuple[str, ...]] = ("AllSigned", "Bypass", "RemoteSigned", "Unrestricted")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

# Resolved against the config file's directory by the loader.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "cache_dir"),
    ("paths", "state_db"),
    ("paths", "log_dir"),
)

_SECRET_WORDS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "pwd", "credential", "credentials", "auth"}
)
_PROFILE_NAME: Final[re.Pattern[str]] = re.compile(r"[a-z][a-z0-9_-]*")
_REDACTED: Final[str] = "<redacted>"


class MetaConfig(TypedDict):
    schema_version: int


class PathsConfig(TypedDict):
    cache_dir: str
    state_db: str
    log_dir: str


class CatalogConfig(TypedDict):
    base_url: str
    manifest_path: str
    timeout_seconds: float
    token_env: str


class CacheConfig(TypedDict):
    expiration_minutes: int


class PreflightConfig(TypedDict):
    connect_timeout_seconds: float
    default_database_port: int
    runtime_probe_timeout_seconds: float


class ExecutionConfig(TypedDict):
    runtime: Literal["powershell", "python"]
    execution_policy: str
    stop_grace_seconds: float
    deadline_seconds: float
    block_on_preflight_failure: bool
    blocking_checks: list[str]


class HistoryConfig(TypedDict):
    retention_days: int


class ObservabilityConfig(TypedDict):
    log_level: str
    redact_secrets: bool
    notification_capacity: int


class ToolkitConfig(TypedDict):
    meta: MetaConfig
    paths: PathsConfig
    catalog: CatalogConfig
    cache: CacheConfig
    preflight: PreflightConfig
    execution: ExecutionConfig
    history: HistoryConfig
    observability: ObservabilityConfig
    profiles: dict[str, dict[str, Any]]


DEFAULT_CONFIG: Final[ToolkitConfig] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "paths": {
        "cache_dir": str(CACHE_DIR),
        "state_db": str(STATE_DB_PATH),
        "log_dir": str(LOG_DIR),
    },
    "catalog": {
        "base_url": DEFAULT_CATALOG_URL,
        "manifest_path": MANIFEST_PATH,
        "timeout_seconds": 30.0,
        "token_env": "BEPOZ_TOOLKIT_CATALOG_TOKEN",
    },
    "cache": {"expiration_minutes": DEFAULT_CACHE_TTL_MINUTES},
    "preflight": {
        "connect_timeout_seconds": DEFAULT_CONNECT_TIMEOUT_SECONDS,
        "default_database_port": DEFAULT_DATABASE_PORT,
        "runtime_probe_timeout_seconds": 10.0,
    },
    "execution": {
        "runtime": "powershell",
        "execution_policy": "Bypass",
        "stop_grace_seconds": 5.0,
        "deadline_seconds": 0.0,
        "block_on_preflight_failure": True,
        "blocking_checks": [],
    },
    "history": {"retention_days": 90},
    "observability": {
        "log_level": "INFO",
        "redact_secrets": True,
        "notification_capacity": 256,
    },
    "profiles": {
        "strict": {
            "cache": {"expiration_minutes": 15},
            "execution": {"deadline_seconds": 1800.0},
        },
        "development": {
            "execution": {"runtime": "python"},
            "observability": {"log_level": "DEBUG"},
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


class ConfigValidationError(ValueError):
    """One or more config fields are invalid; ``issues`` lists each with its path."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "unknown validation failure"))


class _Invalid(ValueError):
    pass


# -- field rules ------------------------------------------------------------
#
# A rule takes the raw value and returns the normalized one, or raises _Invalid.

Rule = Callable[[object], object]


def _text(value: object) -> str:
    if not isinstance(value, str):
        raise _Invalid(f"expected string, got {type(value).__name__}")
    stripped = value.strip()
    if not stripped:
        raise _Invalid("must not be empty")
    return stripped


def _path_text(value: object) -> str:
    text = _text(value)
    if "\x00" in text:
        raise _Invalid("must not contain NUL bytes")
    return text


def _http_url(value: object) -> str:
    text = _text(value)
    if re.fullmatch(r"https?://[^\s/]+(/\S*)?", text) is None:
        raise _Invalid("must be an http(s) URL")
    return text.rstrip("/")


def _env_name(value: object) -> str:
    text = _text(value)
    if re.fullmatch(r"[A-Z_][A-Z0-9_]*", text) is None:
        raise _Invalid("must be an env var name (example: BEPOZ_TOOLKIT_CATALOG_TOKEN)")
    return text


def _flag(value: object) -> bool:
    if not isinstance(value, bool):
        raise _Invalid(f"expected boolean, got {type(value).__name__}")
    return value


def _one_of(*choices: str) -> Rule:
    def rule(value: object) -> str:
        text = _text(value)
        if text not in choices:
            raise _Invalid(f"invalid value {text!r}; expected one of: {', '.join(sorted(choices))}")
        return text

    return rule


def _integer(*, low: int, high: int | None = None) -> Rule:
    def rule(value: object) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise _Invalid(f"expected integer, got {type(value).__name__}")
        if value < low:
            raise _Invalid(f"must be >= {low}")
        if high is not None and value > high:
            raise _Invalid(f"must be <= {high}")
        return value

    return rule


def _seconds(*, zero_ok: bool) -> Rule:
    def rule(value: object) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise _Invalid(f"expected number, got {type(value).__name__}")
        number = float(value)
        if not math.isfinite(number):
            raise _Invalid("must be finite")
        if zero_ok and number < 0:
            raise _Invalid("must be >= 0.0")
        if not zero_ok and number <= 0:
            raise _Invalid("must be > 0.0")
        return number

    return rule


def _check_names(value: object) -> list[str]:
    if isinstance(value, str) or not isinstance(value, Sequence):
        raise _Invalid(f"expected list of check names, got {type(value).__name__}")
    names: list[str] = []
    for item in value:
        name = _text(item)
        if name not in ALL_CHECKS:
            raise _Invalid(f"unknown check {name!r}; expected any of: {', '.join(ALL_CHECKS)}")
        if name not in names:
            names.append(name)
    return names


# Field order is reporting order within a section.
_SECTIONS: Final[dict[str, dict[str, Rule]]] = {
    "cache": {"expiration_minutes": _integer(low=1)},
    "catalog": {
        "base_url": _http_url,
        "manifest_path": _path_text,
        "timeout_seconds": _seconds(zero_ok=False),
        "token_env": _env_name,
    },
    "execution": {
        "runtime": _one_of(*RUNTIMES),
        "execution_policy": _one_of(*EXECUTION_POLICIES),
        "stop_grace_seconds": _seconds(zero_ok=True),
        "deadline_seconds": _seconds(zero_ok=True),
        "block_on_preflight_failure": _flag,
        "blocking_checks": _check_names,
    },
    "history": {"retention_days": _integer(low=0)},
    "observability": {
        "log_level": _one_of(*LOG_LEVELS),
        "redact_secrets": _flag,
        "notification_capacity": _integer(low=1),
    },
    "paths": {"cache_dir": _path_text, "state_db": _path_text, "log_dir": _path_text},
    "preflight": {
        "connect_timeout_seconds": _seconds(zero_ok=False),
        "default_database_port": _integer(low=1, high=65535),
        "runtime_probe_timeout_seconds": _seconds(zero_ok=False),
    },
}


class _Validator:
    """Accumulates issues while normalizing a config document."""

    def __init__(self) -> None:
        self.issues: list[ConfigValidationIssue] = []

    def flag(self, path: str, message: str) -> None:
        self.issues.append(ConfigValidationIssue(path=path, message=message))

    def table(self, value: object, path: str) -> dict[str, object] | None:
        if not isinstance(value, Mapping):
            self.flag(path, f"expected object, got {type(value).__name__}")
            return None
        table: dict[str, object] = {}
        for key, item in value.items():
            if isinstance(key, str):
                table[key] = item
            else:
                self.flag(path, f"object key must be string, got {type(key).__name__}")
        return table

    def extra_keys(self, table: Mapping[str, object], known: Sequence[str], path: str) -> None:
        for key in sorted(set(table) - set(known)):
            if _is_secret_key(key):
                self.flag(
                    _dotted(path, key),
                    "embedded secret values are forbidden; use an *_env key with an env var name",
                )
            else:
                self.flag(_dotted(path, key), "unknown field")

    def missing_keys(self, table: Mapping[str, object], known: Sequence[str], path: str) -> None:
        for key in sorted(set(known) - set(table)):
            self.flag(_dotted(path, key), "missing required field")

    def section(self, name: str, table: Mapping[str, object], path: str, *, complete: bool) -> dict[str, Any]:
        rules = _SECTIONS[name]
        self.extra_keys(table, tuple(rules), path)
        if complete:
            self.missing_keys(table, tuple(rules), path)
        normalized: dict[str, Any] = {}
        for field, rule in rules.items():
            if field not in table:
                continue
            try:
                normalized[field] = rule(table[field])
            except _Invalid as exc:
                self.flag(_dotted(path, field), str(exc))
        return normalized

    def document(self, root: Mapping[str, object]) -> dict[str, Any]:
        top_level = ("meta", "profiles", *_SECTIONS)
        self.extra_keys(root, top_level, "")
        self.missing_keys(root, top_level, "")

        result: dict[str, Any] = {}
        meta = self.table(root.get("meta", {}), "meta")
        if meta is not None:
            self.extra_keys(meta, ("schema_version",), "meta")
            version: int | None = None
            try:
                version = _integer(low=1)(meta.get("schema_version"))  # type: ignore[assignment]
            except _Invalid as exc:
                self.flag("meta.schema_version", str(exc))
            if version is not None and version != ConfigSchemaVersion:
                self.flag(
                    "meta.schema_version",
                    f"schema version {version} is not supported (expected {ConfigSchemaVersion})",
                )
            result["meta"] = {"schema_version": version}

        for name in _SECTIONS:
            table = self.table(root.get(name, {}), name)
            if table is not None:
                result[name] = self.section(name, table, name, complete=True)

        profiles = self.table(root.get("profiles", {}), "profiles")
        if profiles is not None:
            result["profiles"] = {
                name: overlay
                for name in sorted(profiles)
                if (overlay := self.profile(name, profiles[name])) is not None
            }
        return result

    def profile(self, name: str, value: object) -> dict[str, Any] | None:
        path = _dotted("profiles", name)
        if _PROFILE_NAME.fullmatch(name) is None:
            self.flag(path, "profile name must match ^[a-z][a-z0-9_-]*$")
            return None
        overlay = self.table(value, path)
        if overlay is None:
            return None
        self.extra_keys(overlay, tuple(_SECTIONS), path)
        checked: dict[str, Any] = {}
        for section in _SECTIONS:
            if section not in overlay:
                continue
            table = self.table(overlay[section], _dotted(path, section))
            if table is not None:
                checked[section] = self.section(
                    section, table, _dotted(path, section), complete=False
                )
        return checked


def default_config() -> ToolkitConfig:
    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """New mapping with ``overlay`` merged into ``base`` table by table; inputs are untouched."""

    merged: dict[str, Any] = {
        key: merge_config(value, {}) if isinstance(value, Mapping) else copy.deepcopy(value)
        for key, value in sorted(base.items())
    }
    for key, value in sorted(overlay.items()):
        current = merged.get(key)
        if isinstance(value, Mapping):
            merged[key] = merge_config(current if isinstance(current, Mapping) else {}, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Merge ``profiles.<profile>`` over ``config`` and validate the result."""

    name = (profile or "").strip()
    if not name:
        return merge_config(config, {})

    profiles = config.get("profiles")
    overlay = profiles.get(name) if isinstance(profiles, Mapping) else None
    if overlay is None:
        raise ConfigValidationError(
            [ConfigValidationIssue("profiles", f"profile {name!r} is not defined")]
        )
    if not isinstance(overlay, Mapping):
        raise ConfigValidationError(
            [ConfigValidationIssue(f"profiles.{name}", "profile overlay must be an object")]
        )
    return assert_valid_config(merge_config(config, overlay))


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Normalized copy of ``config``; raises ``ConfigValidationError`` with every issue found."""

    validator = _Validator()
    root = validator.table(config, "<root>")
    normalized = validator.document(root) if root is not None else None
    if normalized is None or validator.issues:
        raise ConfigValidationError(validator.issues)
    return normalized


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Copy for display with secret-looking keys masked; ``*_env`` references stay visible."""

    if not isinstance(config, Mapping):
        return {}
    return _masked(config)  # type: ignore[return-value]


def _masked(value: object) -> object:
    if isinstance(value, Mapping):
        return {
            key: _REDACTED if _is_secret_key(key) else _masked(item)
            for key, item in sorted(value.items())
        }
    if isinstance(value, (list, tuple)):
        return [_masked(item) for item in value]
    return value


def _is_secret_key(key: str) -> bool:
    lowered = key.strip().lower()
    if lowered.endswith("_env"):
        return False
    return not _SECRET_WORDS.isdisjoint(re.split(r"[^a-z0-9]+", lowered))


def _dotted(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "DEFAULT_CONFIG",
    "EXECUTION_POLICIES",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "RUNTIMES",
    "ToolkitConfig",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "redact_config",
]
