"""
bepoz-toolkit — catalog manifest model

File: src/bepoz_toolkit/catalog/manifest.py

Purpose
- Typed view of the catalog ``manifest.json``: tools, shared modules, categories.
- Coerce user-supplied tool parameters against their declared types.

Functional requirements
- Keys are accepted in the catalog's camelCase form and in snake_case.
- Tool ids are unique; every tool names a script file or is reported as such
  by pre-flight.
- Parameter coercion enforces required parameters and applies defaults.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Final

from bepoz_toolkit.preflight.models import ToolRequirements

PARAMETER_TYPES: Final[frozenset[str]] = frozenset({"string", "int", "bool"})

_TRUE_VALUES: Final[frozenset[str]] = frozenset({"1", "true", "yes", "y", "on"})
_FALSE_VALUES: Final[frozenset[str]] = frozenset({"0", "false", "no", "n", "off"})


class ManifestError(ValueError):
    """Raised when a manifest payload is malformed."""


class ParameterError(ManifestError):
    """Raised when supplied tool parameters do not satisfy their declarations."""


@dataclass(frozen=True, slots=True)
class ToolParameter:
    name: str
    type: str = "string"
    required: bool = False
    description: str = ""
    default: str | None = None

    def coerce(self, value: object) -> str | int | bool:
        if self.type == "int":
            if isinstance(value, bool):
                raise ParameterError(f"parameter {self.name!r} must be an integer")
            if isinstance(value, int):
                return value
            try:
                return int(str(value).strip())
            except ValueError as exc:
                raise ParameterError(f"parameter {self.name!r} must be an integer") from exc
        if self.type == "bool":
            if isinstance(value, bool):
                return value
            lowered = str(value).strip().lower()
            if lowered in _TRUE_VALUES:
                return True
            if lowered in _FALSE_VALUES:
                return False
            raise ParameterError(f"parameter {self.name!r} must be a boolean")
        return str(value)


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    id: str
    name: str
    file: str
    category: str = ""
    description: str = ""
    version: str = ""
    requires_admin: bool = False
    requires_database: bool = False
    dependencies: tuple[str, ...] = field(default_factory=tuple)
    parameters: tuple[ToolParameter, ...] = field(default_factory=tuple)

    def requirements(self) -> ToolRequirements:
        return ToolRequirements(
            script_key=self.file or None,
            requires_elevation=self.requires_admin,
            requires_connectivity=self.requires_database,
            dependencies=self.dependencies,
        )


@dataclass(frozen=True, slots=True)
class ModuleDefinition:
    id: str
    name: str
    file: str
    description: str = ""
    version: str = ""
    exported_functions: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class CategoryDefinition:
    id: str
    name: str
    description: str = ""


@dataclass(frozen=True, slots=True)
class Manifest:
    version: str = ""
    tools: tuple[ToolDefinition, ...] = field(default_factory=tuple)
    modules: tuple[ModuleDefinition, ...] = field(default_factory=tuple)
    categories: tuple[CategoryDefinition, ...] = field(default_factory=tuple)

    def tool(self, tool_id: str) -> ToolDefinition | None:
        for candidate in self.tools:
            if candidate.id == tool_id:
                return candidate
        return None

    def tools_in(self, category: str) -> list[ToolDefinition]:
        return [tool for tool in self.tools if tool.category == category]


def parse_manifest(payload: Mapping[str, Any] | str | bytes) -> Manifest:
    """Build a :class:`Manifest` from decoded JSON or raw JSON text."""

    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ManifestError(f"manifest is not valid JSON: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise ManifestError("manifest must be a JSON object")

    tools = tuple(
        _parse_tool(item, f"tools[{index}]")
        for index, item in enumerate(_list(payload, "tools", "manifest"))
    )
    seen: set[str] = set()
    for tool in tools:
        if tool.id in seen:
            raise ManifestError(f"duplicate tool id {tool.id!r}")
        seen.add(tool.id)

    return Manifest(
        version=_text(payload, "version", "manifest"),
        tools=tools,
        modules=tuple(
            _parse_module(item, f"modules[{index}]")
            for index, item in enumerate(_list(payload, "modules", "manifest"))
        ),
        categories=tuple(
            CategoryDefinition(
                id=_required_text(item, "id", f"categories[{index}]"),
                name=_text(item, "name", f"categories[{index}]"),
                description=_text(item, "description", f"categories[{index}]"),
            )
            for index, item in enumerate(_list(payload, "categories", "manifest"))
        ),
    )


def coerce_parameters(
    tool: ToolDefinition, supplied: Mapping[str, object] | None = None
) -> dict[str, str | int | bool]:
    """Validate ``supplied`` against the tool's declarations, applying defaults."""

    supplied = dict(supplied or {})
    declared = {parameter.name: parameter for parameter in tool.parameters}
    unknown = sorted(set(supplied) - set(declared))
    if unknown:
        raise ParameterError(f"unknown parameters for {tool.id}: {', '.join(unknown)}")

    coerced: dict[str, str | int | bool] = {}
    for name, parameter in declared.items():
        if name in supplied and supplied[name] is not None:
            coerced[name] = parameter.coerce(supplied[name])
        elif parameter.default not in (None, ""):
            coerced[name] = parameter.coerce(parameter.default)
        elif parameter.required:
            raise ParameterError(f"missing required parameter {name!r} for {tool.id}")
    return coerced


def _parse_tool(item: object, path: str) -> ToolDefinition:
    if not isinstance(item, Mapping):
        raise ManifestError(f"{path}: expected object")
    return ToolDefinition(
        id=_required_text(item, "id", path),
        name=_text(item, "name", path) or _required_text(item, "id", path),
        file=_text(item, "file", path),
        category=_text(item, "category", path),
        description=_text(item, "description", path),
        version=_text(item, "version", path),
        requires_admin=_flag(item, "requiresAdmin", "requires_admin", path),
        requires_database=_flag(item, "requiresDatabase", "requires_database", path),
        dependencies=tuple(_string_list(item, "dependencies", path)),
        parameters=tuple(
            _parse_parameter(entry, f"{path}.parameters[{index}]")
            for index, entry in enumerate(_list(item, "parameters", path))
        ),
    )


def _parse_parameter(item: object, path: str) -> ToolParameter:
    if not isinstance(item, Mapping):
        raise ManifestError(f"{path}: expected object")
    kind = (_text(item, "type", path) or "string").lower()
    if kind not in PARAMETER_TYPES:
        raise ManifestError(f"{path}.type: unsupported parameter type {kind!r}")
    default = _optional(item, "defaultValue", "default_value", "default")
    return ToolParameter(
        name=_required_text(item, "name", path),
        type=kind,
        required=_flag(item, "required", "required", path),
        description=_text(item, "description", path),
        default=None if default is None else str(default),
    )


def _parse_module(item: object, path: str) -> ModuleDefinition:
    if not isinstance(item, Mapping):
        raise ManifestError(f"{path}: expected object")
    exported = _optional(item, "exportedFunctions", "exported_functions")
    if exported is not None and (
        not isinstance(exported, list) or not all(isinstance(name, str) for name in exported)
    ):
        raise ManifestError(f"{path}.exportedFunctions: expected list of strings")
    return ModuleDefinition(
        id=_required_text(item, "id", path),
        name=_text(item, "name", path),
        file=_required_text(item, "file", path),
        description=_text(item, "description", path),
        version=_text(item, "version", path),
        exported_functions=tuple(exported or ()),
    )


def _optional(item: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in item:
            return item[key]
    return None


def _text(item: Mapping[str, Any], key: str, path: str) -> str:
    value = item.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ManifestError(f"{path}.{key}: expected string")
    return value.strip()


def _required_text(item: Mapping[str, Any], key: str, path: str) -> str:
    value = _text(item, key, path)
    if not value:
        raise ManifestError(f"{path}.{key}: must not be empty")
    return value


def _flag(item: Mapping[str, Any], camel: str, snake: str, path: str) -> bool:
    value = _optional(item, camel, snake)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ManifestError(f"{path}.{camel}: expected boolean")
    return value


def _list(item: Mapping[str, Any], key: str, path: str) -> list[Any]:
    value = item.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ManifestError(f"{path}.{key}: expected list")
    return value


def _string_list(item: Mapping[str, Any], key: str, path: str) -> list[str]:
    values = _list(item, key, path)
    if not all(isinstance(value, str) and value.strip() for value in values):
        raise ManifestError(f"{path}.{key}: expected list of non-empty strings")
    return [value.strip() for value in values]


__all__ = [
    "CategoryDefinition",
    "Manifest",
    "ManifestError",
    "ModuleDefinition",
    "PARAMETER_TYPES",
    "ParameterError",
    "ToolDefinition",
    "ToolParameter",
    "coerce_parameters",
    "parse_manifest",
]
