"""
bepoz-toolkit — interpreter profiles

File: src/bepoz_toolkit/execution/interpreters.py

Purpose
- Describe how to locate, version-probe and launch each supported script runtime.

Functional requirements
- Executables are tried in preference order: the modern runtime first, then legacy.
- Execution policy is scoped to the spawned process and never changes machine state.
- Launch commands carry named parameters to the script and a line protocol back:
  ``::warning::``, ``::verbose::``, ``::progress::N``, ``::result::`` and ``::exit::N``
  prefixes on stdout; error records on stderr.
"""

from __future__ import annotations

import base64
import json
import os
import shutil
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Final

PYTHON_SHIM: Final[Path] = Path(__file__).with_name("_python_shim.py")

_POWERSHELL_WRAPPER: Final[str] = r"""
$ErrorActionPreference = 'Continue'
$WarningPreference = 'Continue'
$VerbosePreference = 'Continue'
$InformationPreference = 'Continue'
$ProgressPreference = 'Continue'
[Console]::OutputEncoding = [System.Text.Encoding]::UTF8
function global:Write-Progress {
    param([Parameter(Position = 0)][string]$Activity, [string]$Status, [int]$PercentComplete = -1)
    if ($PercentComplete -ge 0) { [Console]::Out.WriteLine("::progress::$PercentComplete") }
}
$__params = @{}
$__json = '__PARAMS_JSON__'
if ($__json) {
    (ConvertFrom-Json $__json).psobject.Properties | ForEach-Object { $__params[$_.Name] = $_.Value }
}
$global:LASTEXITCODE = $null
try {
    & '__SCRIPT_PATH__' @__params 2>&1 3>&1 4>&1 6>&1 | ForEach-Object {
        if ($_ -is [System.Management.Automation.ErrorRecord]) {
            [Console]::Error.WriteLine($_.ToString())
        } elseif ($_ -is [System.Management.Automation.WarningRecord]) {
            [Console]::Out.WriteLine('::warning::' + $_.Message)
        } elseif ($_ -is [System.Management.Automation.VerboseRecord]) {
            [Console]::Out.WriteLine('::verbose::' + $_.Message)
        } elseif ($_ -is [System.Management.Automation.InformationRecord]) {
            [Console]::Out.WriteLine([string]$_.MessageData)
        } else {
            [Console]::Out.WriteLine('::result::' + ($_ | Out-String).TrimEnd())
        }
    }
} catch {
    [Console]::Error.WriteLine($_.ToString())
}
if ($null -ne $global:LASTEXITCODE) { [Console]::Out.WriteLine("::exit::$global:LASTEXITCODE") }
"""


class RuntimeKind(str, Enum):
    POWERSHELL = "powershell"
    PYTHON = "python"


@dataclass(frozen=True, slots=True)
class InterpreterProfile:
    """A script runtime and the executables that can host it, best first."""

    kind: RuntimeKind
    executables: tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", RuntimeKind(self.kind))
        executables = tuple(item for item in self.executables if item)
        if not executables:
            raise ValueError("InterpreterProfile requires at least one executable")
        object.__setattr__(self, "executables", executables)

    @classmethod
    def powershell(cls, executables: tuple[str, ...] = ("pwsh", "powershell")) -> InterpreterProfile:
        return cls(kind=RuntimeKind.POWERSHELL, executables=executables)

    @classmethod
    def python(cls, executable: str | None = None) -> InterpreterProfile:
        return cls(kind=RuntimeKind.PYTHON, executables=(executable or sys.executable,))

    @classmethod
    def for_runtime(cls, runtime: str) -> InterpreterProfile:
        kind = RuntimeKind(runtime)
        if kind is RuntimeKind.POWERSHELL:
            return cls.powershell()
        return cls.python()

    @property
    def label(self) -> str:
        return "PowerShell" if self.kind is RuntimeKind.POWERSHELL else "Python"

    def is_legacy(self, executable: str) -> bool:
        """True for any fallback executable after the preferred one."""
        return executable in self.executables[1:]

    def find_executable(self) -> str | None:
        for candidate in self.executables:
            resolved = _which(candidate)
            if resolved is not None:
                return resolved
        return None

    def version_command(self, executable: str) -> list[str]:
        if self.kind is RuntimeKind.POWERSHELL:
            return [executable, "-NoProfile", "-Command", "$PSVersionTable.PSVersion.ToString()"]
        return [
            executable,
            "-I",
            "-c",
            "import platform; print(platform.python_version())",
        ]

    def launch_command(
        self,
        executable: str,
        script_path: Path,
        parameters: Mapping[str, Any] | None = None,
        *,
        execution_policy: str = "Bypass",
    ) -> list[str]:
        params_json = json.dumps(dict(parameters or {}), default=str, ensure_ascii=False)
        if self.kind is RuntimeKind.POWERSHELL:
            wrapper = _POWERSHELL_WRAPPER.replace(
                "__PARAMS_JSON__", _ps_single_quoted(params_json)
            ).replace("__SCRIPT_PATH__", _ps_single_quoted(str(script_path)))
            encoded = base64.b64encode(wrapper.encode("utf-16-le")).decode("ascii")
            return [
                executable,
                "-NoLogo",
                "-NoProfile",
                "-NonInteractive",
                "-ExecutionPolicy",
                execution_policy,
                "-EncodedCommand",
                encoded,
            ]
        return [
            executable,
            "-I",
            "-X",
            "utf8",
            "-u",
            str(PYTHON_SHIM),
            str(script_path),
            params_json,
        ]


def _which(candidate: str) -> str | None:
    if os.path.dirname(candidate):
        path = Path(candidate)
        return str(path) if path.is_file() and os.access(path, os.X_OK) else None
    return shutil.which(candidate)


def _ps_single_quoted(value: str) -> str:
    return value.replace("'", "''")


__all__ = [
    "InterpreterProfile",
    "PYTHON_SHIM",
    "RuntimeKind",
]
