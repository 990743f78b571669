"""
bepoz-toolkit — pre-flight models

File: src/bepoz_toolkit/preflight/models.py

Purpose
- Typed inputs and outputs of the pre-flight validator.

Functional requirements
- A failing result always carries a non-empty message and remediation hint.
- Connection descriptors parse ``host,port``, ``host:port`` and ``host\\INSTANCE``.
- Blocking is caller policy: any failure, or only failures of named checks.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Final

from bepoz_toolkit.constants import DEFAULT_DATABASE_PORT

CHECK_ADMIN: Final[str] = "Administrator Privileges"
CHECK_DATABASE: Final[str] = "Database Connection"
CHECK_RUNTIME: Final[str] = "Interpreter Runtime"
CHECK_DEPENDENCIES: Final[str] = "Dependencies"
CHECK_TOOL_SCRIPT: Final[str] = "Tool Script"

ALL_CHECKS: Final[tuple[str, ...]] = (
    CHECK_ADMIN,
    CHECK_DATABASE,
    CHECK_RUNTIME,
    CHECK_DEPENDENCIES,
    CHECK_TOOL_SCRIPT,
)


class RemediationAction(str, Enum):
    NONE = "none"
    ELEVATE_PRIVILEGES = "elevate-privileges"
    FETCH_DEPENDENCY = "fetch-dependency"
    RETRY_CONNECTIVITY = "retry-connectivity"


@dataclass(frozen=True, slots=True)
class PreFlightCheckResult:
    """Outcome of one check; computed fresh on every validation, never persisted."""

    check_name: str
    passed: bool
    message: str
    remediation: RemediationAction = RemediationAction.NONE
    hint: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.check_name, str) or not self.check_name.strip():
            raise ValueError("PreFlightCheckResult.check_name must be a non-empty string")
        object.__setattr__(self, "remediation", RemediationAction(self.remediation))
        object.__setattr__(self, "passed", bool(self.passed))
        if not self.passed:
            if not self.message.strip():
                raise ValueError(f"failing check {self.check_name!r} must carry a message")
            if not self.hint.strip():
                raise ValueError(f"failing check {self.check_name!r} must carry a remediation hint")

    @classmethod
    def success(cls, check_name: str, message: str) -> PreFlightCheckResult:
        return cls(check_name=check_name, passed=True, message=message)

    @classmethod
    def failure(
        cls,
        check_name: str,
        message: str,
        *,
        remediation: RemediationAction,
        hint: str,
    ) -> PreFlightCheckResult:
        return cls(
            check_name=check_name,
            passed=False,
            message=message,
            remediation=remediation,
            hint=hint,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "check_name": self.check_name,
            "passed": self.passed,
            "message": self.message,
            "remediation": self.remediation.value,
            "hint": self.hint,
        }


@dataclass(frozen=True, slots=True)
class ToolRequirements:
    """What a tool needs before it may run."""

    script_key: str | None
    requires_elevation: bool = False
    requires_connectivity: bool = False
    dependencies: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        key = self.script_key.strip() if isinstance(self.script_key, str) else None
        object.__setattr__(self, "script_key", key or None)
        object.__setattr__(self, "dependencies", tuple(self.dependencies))


@dataclass(frozen=True, slots=True)
class ConnectionTarget:
    """TCP endpoint of a database server; the raw descriptor is kept for messages."""

    server: str
    host: str
    port: int
    instance: str | None = None

    @classmethod
    def from_server(
        cls, server: str, *, default_port: int = DEFAULT_DATABASE_PORT
    ) -> ConnectionTarget:
        raw = server.strip()
        if not raw:
            raise ValueError("database server must not be empty")

        host_part = raw
        port = default_port
        for separator in (",", ":"):
            if separator in raw:
                host_part, _, port_text = raw.partition(separator)
                port_text = port_text.strip()
                if port_text:
                    if not port_text.isdigit():
                        raise ValueError(f"invalid port in database server {server!r}")
                    port = int(port_text)
                break

        host, _, instance = host_part.strip().partition("\\")
        host = host.strip()
        if not host:
            raise ValueError(f"database server has no host: {server!r}")
        if not 0 < port < 65536:
            raise ValueError(f"port out of range in database server {server!r}")
        return cls(server=raw, host=host, port=port, instance=instance.strip() or None)


def blocking_failures(
    results: Iterable[PreFlightCheckResult],
    blocking_checks: Sequence[str] | None = None,
) -> list[PreFlightCheckResult]:
    """Failures that should stop a launch; ``None`` means every check blocks."""

    failed = [result for result in results if not result.passed]
    if blocking_checks is None:
        return failed
    selected = set(blocking_checks)
    return [result for result in failed if result.check_name in selected]


__all__ = [
    "ALL_CHECKS",
    "CHECK_ADMIN",
    "CHECK_DATABASE",
    "CHECK_DEPENDENCIES",
    "CHECK_RUNTIME",
    "CHECK_TOOL_SCRIPT",
    "ConnectionTarget",
    "PreFlightCheckResult",
    "RemediationAction",
    "ToolRequirements",
    "blocking_failures",
]
