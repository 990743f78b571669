"""Pre-flight readiness checks run before a tool is launched."""

from bepoz_toolkit.preflight.models import (
    ALL_CHECKS,
    CHECK_ADMIN,
    CHECK_DATABASE,
    CHECK_DEPENDENCIES,
    CHECK_RUNTIME,
    CHECK_TOOL_SCRIPT,
    ConnectionTarget,
    PreFlightCheckResult,
    RemediationAction,
    ToolRequirements,
    blocking_failures,
)
from bepoz_toolkit.preflight.probes import RuntimeProbe, RuntimeVersion, is_elevated, tcp_connect
from bepoz_toolkit.preflight.validator import PreFlightValidator

__all__ = [
    "ALL_CHECKS",
    "CHECK_ADMIN",
    "CHECK_DATABASE",
    "CHECK_DEPENDENCIES",
    "CHECK_RUNTIME",
    "CHECK_TOOL_SCRIPT",
    "ConnectionTarget",
    "PreFlightCheckResult",
    "PreFlightValidator",
    "RemediationAction",
    "RuntimeProbe",
    "RuntimeVersion",
    "ToolRequirements",
    "blocking_failures",
    "is_elevated",
    "tcp_connect",
]
