"""Unit tests for runtime profiles and launch command construction."""

from __future__ import annotations

import base64
import json
import sys
from pathlib import Path

import pytest

from bepoz_toolkit.execution.interpreters import PYTHON_SHIM, InterpreterProfile, RuntimeKind


def _decode_wrapper(command: list[str]) -> str:
    encoded = command[command.index("-EncodedCommand") + 1]
    return base64.b64decode(encoded).decode("utf-16-le")


def test_powershell_profile_prefers_modern_runtime() -> None:
    profile = InterpreterProfile.powershell()

    assert profile.kind is RuntimeKind.POWERSHELL
    assert profile.executables == ("pwsh", "powershell")
    assert profile.is_legacy("pwsh") is False
    assert profile.is_legacy("powershell") is True
    assert profile.label == "PowerShell"


def test_for_runtime_selects_profile() -> None:
    assert InterpreterProfile.for_runtime("powershell").kind is RuntimeKind.POWERSHELL
    assert InterpreterProfile.for_runtime("python").executables == (sys.executable,)
    with pytest.raises(ValueError):
        InterpreterProfile.for_runtime("bash")


def test_profile_requires_an_executable() -> None:
    with pytest.raises(ValueError):
        InterpreterProfile(kind=RuntimeKind.PYTHON, executables=("",))


def test_powershell_launch_scopes_execution_policy_to_process() -> None:
    profile = InterpreterProfile.powershell()

    command = profile.launch_command(
        "pwsh",
        Path("C:/cache/tools/Reset-Till.ps1"),
        {"TillId": 4},
        execution_policy="RemoteSigned",
    )

    assert command[:6] == ["pwsh", "-NoLogo", "-NoProfile", "-NonInteractive", "-ExecutionPolicy", "RemoteSigned"]
    wrapper = _decode_wrapper(command)
    assert "& 'C:/cache/tools/Reset-Till.ps1' @__params" in wrapper
    assert '\'{"TillId": 4}\'' in wrapper
    assert "::exit::" in wrapper
    assert "Set-ExecutionPolicy" not in wrapper


def test_powershell_launch_escapes_single_quotes() -> None:
    command = InterpreterProfile.powershell().launch_command(
        "pwsh", Path("/cache/O'Brien.ps1"), {"note": "it's"}
    )

    wrapper = _decode_wrapper(command)
    assert "'/cache/O''Brien.ps1'" in wrapper
    assert "it''s" in wrapper


def test_python_launch_uses_isolated_shim() -> None:
    profile = InterpreterProfile.python("/usr/bin/python3")

    command = profile.launch_command("/usr/bin/python3", Path("/cache/tool.py"), {"a": [1, 2]})

    assert command[:5] == ["/usr/bin/python3", "-I", "-X", "utf8", "-u"]
    assert command[5] == str(PYTHON_SHIM)
    assert command[6] == str(Path("/cache/tool.py"))
    assert json.loads(command[7]) == {"a": [1, 2]}
    assert PYTHON_SHIM.is_file()


def test_version_commands() -> None:
    assert InterpreterProfile.powershell().version_command("pwsh")[-1] == "$PSVersionTable.PSVersion.ToString()"
    assert InterpreterProfile.python().version_command("python3")[:3] == ["python3", "-I", "-c"]


def test_find_executable_with_explicit_paths(tmp_path: Path) -> None:
    assert InterpreterProfile.python(sys.executable).find_executable() == sys.executable
    assert InterpreterProfile.python(str(tmp_path / "missing")).find_executable() is None
