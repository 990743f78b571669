"""Environment probes used by pre-flight checks: privilege, TCP reachability, runtime."""

from __future__ import annotations

import os
import socket
import subprocess
import sys
from dataclasses import dataclass
from typing import Final

from bepoz_toolkit.execution.interpreters import InterpreterProfile

DEFAULT_RUNTIME_PROBE_TIMEOUT_SECONDS: Final[float] = 10.0


@dataclass(frozen=True, slots=True)
class RuntimeVersion:
    executable: str
    version: str
    legacy: bool = False


def is_elevated() -> bool:
    """True when the current process has administrator/root rights."""
    if sys.platform == "win32":
        import ctypes

        return bool(ctypes.windll.shell32.IsUserAnAdmin())
    return os.geteuid() == 0


def tcp_connect(host: str, port: int, timeout_seconds: float) -> None:
    """Open and close a TCP connection; raises ``OSError`` when unreachable."""
    with socket.create_connection((host, port), timeout=timeout_seconds):
        pass


class RuntimeProbe:
    """Reports the first runtime executable that answers a version query."""

    def __init__(
        self,
        profile: InterpreterProfile,
        *,
        timeout_seconds: float = DEFAULT_RUNTIME_PROBE_TIMEOUT_SECONDS,
    ) -> None:
        self._profile = profile
        self._timeout_seconds = timeout_seconds

    @property
    def profile(self) -> InterpreterProfile:
        return self._profile

    def __call__(self) -> RuntimeVersion | None:
        for executable in self._profile.executables:
            version = self._query(executable)
            if version is not None:
                return RuntimeVersion(
                    executable=executable,
                    version=version,
                    legacy=self._profile.is_legacy(executable),
                )
        return None

    def _query(self, executable: str) -> str | None:
        try:
            completed = subprocess.run(
                self._profile.version_command(executable),
                capture_output=True,
                text=True,
                stdin=subprocess.DEVNULL,
                timeout=self._timeout_seconds,
                check=False,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError, OSError):
            return None
        output = completed.stdout.strip()
        if completed.returncode != 0 or not output:
            return None
        return output.splitlines()[0].strip()


__all__ = [
    "DEFAULT_RUNTIME_PROBE_TIMEOUT_SECONDS",
    "RuntimeProbe",
    "RuntimeVersion",
    "is_elevated",
    "tcp_connect",
]
