"""
bepoz-toolkit — pre-flight validator

File: src/bepoz_toolkit/preflight/validator.py

Purpose
- Run the fixed battery of independent readiness checks for one tool and
  return an actionable report.

Functional requirements
- Checks run in order: privileges, database, runtime, dependencies, script.
  Privilege, database and dependency checks only run when the tool needs them.
- Each check converts its own faults into a failing result carrying the
  exception text; one faulty check never hides the others.
- Dependency presence is a cache presence probe; stale still counts as present.
- A stale but present script passes with an advisory message.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog

from bepoz_toolkit.constants import DEFAULT_CONNECT_TIMEOUT_SECONDS, DEFAULT_DATABASE_PORT
from bepoz_toolkit.execution.interpreters import InterpreterProfile
from bepoz_toolkit.preflight.models import (
    CHECK_ADMIN,
    CHECK_DATABASE,
    CHECK_DEPENDENCIES,
    CHECK_RUNTIME,
    CHECK_TOOL_SCRIPT,
    ConnectionTarget,
    PreFlightCheckResult,
    RemediationAction,
    ToolRequirements,
)
from bepoz_toolkit.preflight.probes import RuntimeProbe, RuntimeVersion, is_elevated, tcp_connect

if TYPE_CHECKING:
    from bepoz_toolkit.cache.artifact_cache import ArtifactCache

PrivilegeProbe = Callable[[], bool]
Connector = Callable[[str, int, float], None]
RuntimeProbeFn = Callable[[], RuntimeVersion | None]

_HINT_ELEVATE = "Restart the toolkit from an elevated (Run as administrator) session."
_HINT_CONNECTION = "Select or configure a database connection, then retry."
_HINT_NETWORK = "Check that the SQL Server is running and reachable on the network, then retry."
_HINT_RUNTIME = "Install PowerShell 7 or later, or enable Windows PowerShell."
_HINT_FETCH = "Download the missing files from the catalog, then run the checks again."
_HINT_NO_SCRIPT = "This tool's catalog entry has no script; contact the catalog maintainer."


class PreFlightValidator:
    """Decides whether a tool is ready to run on this machine."""

    def __init__(
        self,
        cache: ArtifactCache,
        *,
        privilege_probe: PrivilegeProbe = is_elevated,
        connector: Connector = tcp_connect,
        runtime_probe: RuntimeProbeFn | None = None,
        connect_timeout_seconds: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        default_port: int = DEFAULT_DATABASE_PORT,
        logger: Any | None = None,
    ) -> None:
        self._cache = cache
        self._privilege_probe = privilege_probe
        self._connector = connector
        self._runtime_probe: RuntimeProbeFn = (
            runtime_probe
            if runtime_probe is not None
            else RuntimeProbe(InterpreterProfile.powershell())
        )
        self._connect_timeout_seconds = connect_timeout_seconds
        self._default_port = default_port
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def validate(
        self,
        requirements: ToolRequirements,
        connection: str | ConnectionTarget | None = None,
    ) -> list[PreFlightCheckResult]:
        self._logger.info(
            "preflight_started",
            script_key=requirements.script_key,
            requires_elevation=requirements.requires_elevation,
            requires_connectivity=requirements.requires_connectivity,
            dependency_count=len(requirements.dependencies),
        )

        results: list[PreFlightCheckResult] = []
        if requirements.requires_elevation:
            results.append(
                self._guarded(
                    CHECK_ADMIN,
                    RemediationAction.ELEVATE_PRIVILEGES,
                    _HINT_ELEVATE,
                    self._check_admin,
                )
            )
        if requirements.requires_connectivity:
            results.append(
                self._guarded(
                    CHECK_DATABASE,
                    RemediationAction.RETRY_CONNECTIVITY,
                    _HINT_NETWORK,
                    lambda: self._check_database(connection),
                )
            )
        results.append(
            self._guarded(CHECK_RUNTIME, RemediationAction.NONE, _HINT_RUNTIME, self._check_runtime)
        )
        if requirements.dependencies:
            results.append(
                self._guarded(
                    CHECK_DEPENDENCIES,
                    RemediationAction.FETCH_DEPENDENCY,
                    _HINT_FETCH,
                    lambda: self._check_dependencies(requirements.dependencies),
                )
            )
        results.append(
            self._guarded(
                CHECK_TOOL_SCRIPT,
                RemediationAction.FETCH_DEPENDENCY,
                _HINT_FETCH,
                lambda: self._check_tool_script(requirements.script_key),
            )
        )

        failed = [result.check_name for result in results if not result.passed]
        self._logger.info(
            "preflight_completed",
            passed=len(results) - len(failed),
            failed=len(failed),
            failed_checks=failed,
        )
        return results

    def _guarded(
        self,
        check_name: str,
        remediation: RemediationAction,
        hint: str,
        check: Callable[[], PreFlightCheckResult],
    ) -> PreFlightCheckResult:
        try:
            return check()
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("preflight_check_errored", check=check_name, error=str(exc))
            detail = str(exc) or type(exc).__name__
            return PreFlightCheckResult.failure(
                check_name,
                f"Unable to complete check: {detail}",
                remediation=remediation,
                hint=hint,
            )

    def _check_admin(self) -> PreFlightCheckResult:
        if self._privilege_probe():
            return PreFlightCheckResult.success(CHECK_ADMIN, "Running with administrator privileges.")
        return PreFlightCheckResult.failure(
            CHECK_ADMIN,
            "This tool requires administrator privileges.",
            remediation=RemediationAction.ELEVATE_PRIVILEGES,
            hint=_HINT_ELEVATE,
        )

    def _check_database(self, connection: str | ConnectionTarget | None) -> PreFlightCheckResult:
        if connection is None or (isinstance(connection, str) and not connection.strip()):
            return PreFlightCheckResult.failure(
                CHECK_DATABASE,
                "No database connection selected",
                remediation=RemediationAction.RETRY_CONNECTIVITY,
                hint=_HINT_CONNECTION,
            )

        target = (
            connection
            if isinstance(connection, ConnectionTarget)
            else ConnectionTarget.from_server(connection, default_port=self._default_port)
        )
        try:
            self._connector(target.host, target.port, self._connect_timeout_seconds)
        except TimeoutError:
            reason = "Connection timed out"
        except OSError as exc:
            reason = str(exc) or "Connection failed"
        else:
            return PreFlightCheckResult.success(
                CHECK_DATABASE,
                f"Successfully connected to {target.server} on port {target.port}.",
            )
        return PreFlightCheckResult.failure(
            CHECK_DATABASE,
            f"Cannot reach {target.server} on port {target.port}: {reason}",
            remediation=RemediationAction.RETRY_CONNECTIVITY,
            hint=_HINT_NETWORK,
        )

    def _check_runtime(self) -> PreFlightCheckResult:
        found = self._runtime_probe()
        if found is None:
            return PreFlightCheckResult.failure(
                CHECK_RUNTIME,
                "No supported script runtime is available.",
                remediation=RemediationAction.NONE,
                hint=_HINT_RUNTIME,
            )
        suffix = " (legacy runtime)" if found.legacy else ""
        return PreFlightCheckResult.success(
            CHECK_RUNTIME,
            f"{found.executable} {found.version} is available{suffix}.",
        )

    def _check_dependencies(self, dependencies: tuple[str, ...]) -> PreFlightCheckResult:
        missing = [key for key in dependencies if self._cache.resolve(key) is None]
        if not missing:
            return PreFlightCheckResult.success(
                CHECK_DEPENDENCIES, f"All {len(dependencies)} dependencies are available."
            )
        return PreFlightCheckResult.failure(
            CHECK_DEPENDENCIES,
            f"Missing {len(missing)} dependencies: {', '.join(missing)}",
            remediation=RemediationAction.FETCH_DEPENDENCY,
            hint=_HINT_FETCH,
        )

    def _check_tool_script(self, script_key: str | None) -> PreFlightCheckResult:
        if not script_key:
            return PreFlightCheckResult.failure(
                CHECK_TOOL_SCRIPT,
                "Tool has no script file defined.",
                remediation=RemediationAction.NONE,
                hint=_HINT_NO_SCRIPT,
            )
        if self._cache.resolve(script_key) is None:
            return PreFlightCheckResult.failure(
                CHECK_TOOL_SCRIPT,
                "Tool script is not cached. It needs to be downloaded before execution.",
                remediation=RemediationAction.FETCH_DEPENDENCY,
                hint=_HINT_FETCH,
            )
        if self._cache.is_stale(script_key):
            return PreFlightCheckResult.success(
                CHECK_TOOL_SCRIPT,
                "Tool script is cached but may be outdated. Consider refreshing.",
            )
        return PreFlightCheckResult.success(CHECK_TOOL_SCRIPT, "Tool script is cached and up to date.")


__all__ = [
    "Connector",
    "PreFlightValidator",
    "PrivilegeProbe",
    "RuntimeProbeFn",
]
