"""Unit tests for manifest parsing and parameter coercion."""

from __future__ import annotations

import json

import pytest

from bepoz_toolkit.catalog.manifest import (
    ManifestError,
    ParameterError,
    ToolDefinition,
    ToolParameter,
    coerce_parameters,
    parse_manifest,
)

_MANIFEST = {
    "version": "2.3.0",
    "tools": [
        {
            "id": "reset-till",
            "name": "Reset Till",
            "file": "tools/Reset-Till.ps1",
            "category": "tills",
            "description": "Clears a stuck till session",
            "version": "1.2",
            "requiresAdmin": True,
            "requiresDatabase": True,
            "dependencies": ["modules/BepozDb.psm1"],
            "parameters": [
                {"name": "TillId", "type": "int", "required": True},
                {"name": "Force", "type": "bool", "defaultValue": "false"},
                {"name": "Reason", "type": "string", "description": "audit note"},
            ],
        },
        {"id": "list-venues", "name": "List Venues", "file": "tools/List-Venues.ps1", "category": "venues"},
    ],
    "modules": [
        {
            "id": "bepoz-db",
            "name": "BepozDb",
            "file": "modules/BepozDb.psm1",
            "exportedFunctions": ["Invoke-BepozQuery"],
        }
    ],
    "categories": [{"id": "tills", "name": "Tills"}, {"id": "venues", "name": "Venues"}],
}


def test_parse_camel_case_manifest() -> None:
    manifest = parse_manifest(json.dumps(_MANIFEST))

    assert manifest.version == "2.3.0"
    tool = manifest.tool("reset-till")
    assert tool is not None
    assert tool.requires_admin is True
    assert tool.requires_database is True
    assert tool.dependencies == ("modules/BepozDb.psm1",)
    assert [parameter.name for parameter in tool.parameters] == ["TillId", "Force", "Reason"]
    assert tool.parameters[1].default == "false"
    assert manifest.modules[0].exported_functions == ("Invoke-BepozQuery",)
    assert [category.id for category in manifest.categories] == ["tills", "venues"]
    assert [item.id for item in manifest.tools_in("venues")] == ["list-venues"]
    assert manifest.tool("nope") is None


def test_parse_snake_case_and_bytes() -> None:
    payload = {
        "tools": [
            {
                "id": "t",
                "file": "tools/t.py",
                "requires_admin": True,
                "parameters": [{"name": "n", "type": "INT", "default_value": 3}],
            }
        ]
    }

    manifest = parse_manifest(json.dumps(payload).encode("utf-8"))

    tool = manifest.tools[0]
    assert tool.name == "t"
    assert tool.requires_admin is True
    assert tool.parameters[0].type == "int"
    assert tool.parameters[0].default == "3"


def test_requirements_from_tool() -> None:
    tool = parse_manifest(_MANIFEST).tool("reset-till")
    assert tool is not None

    requirements = tool.requirements()

    assert requirements.script_key == "tools/Reset-Till.ps1"
    assert requirements.requires_elevation is True
    assert requirements.requires_connectivity is True
    assert requirements.dependencies == ("modules/BepozDb.psm1",)


def test_tool_without_file_has_no_script_key() -> None:
    manifest = parse_manifest({"tools": [{"id": "placeholder"}]})

    assert manifest.tools[0].requirements().script_key is None


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ("{not json", "not valid JSON"),
        ("[]", "JSON object"),
        ({"tools": {}}, "expected list"),
        ({"tools": [{"name": "no id"}]}, "tools[0].id"),
        ({"tools": [{"id": "a"}, {"id": "a"}]}, "duplicate tool id"),
        ({"tools": [{"id": "a", "requiresAdmin": "yes"}]}, "expected boolean"),
        ({"tools": [{"id": "a", "parameters": [{"name": "x", "type": "date"}]}]}, "unsupported parameter type"),
        ({"tools": [{"id": "a", "dependencies": [""]}]}, "non-empty strings"),
        ({"modules": [{"id": "m"}]}, "modules[0].file"),
        ({"modules": [{"id": "m", "file": "m.psm1", "exportedFunctions": "x"}]}, "exportedFunctions"),
    ],
)
def test_malformed_manifests_are_rejected(payload, message: str) -> None:
    with pytest.raises(ManifestError, match=message.replace("[", r"\[").replace("]", r"\]")):
        parse_manifest(payload)


def _tool() -> ToolDefinition:
    tool = parse_manifest(_MANIFEST).tool("reset-till")
    assert tool is not None
    return tool


def test_coerce_parameters_applies_types_and_defaults() -> None:
    coerced = coerce_parameters(_tool(), {"TillId": "7", "Reason": "jammed drawer"})

    assert coerced == {"TillId": 7, "Force": False, "Reason": "jammed drawer"}


def test_coerce_parameters_rejects_missing_required() -> None:
    with pytest.raises(ParameterError, match="TillId"):
        coerce_parameters(_tool(), {})


def test_coerce_parameters_rejects_unknown_names() -> None:
    with pytest.raises(ParameterError, match="unknown parameters"):
        coerce_parameters(_tool(), {"TillId": 1, "Venue": "x"})


@pytest.mark.parametrize(
    ("kind", "raw", "expected"),
    [
        ("int", "42", 42),
        ("int", 5, 5),
        ("bool", "yes", True),
        ("bool", "OFF", False),
        ("bool", True, True),
        ("string", 12, "12"),
    ],
)
def test_parameter_coercion(kind: str, raw: object, expected: object) -> None:
    assert ToolParameter(name="p", type=kind).coerce(raw) == expected


@pytest.mark.parametrize(("kind", "raw"), [("int", "4.5"), ("int", True), ("bool", "maybe")])
def test_parameter_coercion_errors(kind: str, raw: object) -> None:
    with pytest.raises(ParameterError):
        ToolParameter(name="p", type=kind).coerce(raw)
