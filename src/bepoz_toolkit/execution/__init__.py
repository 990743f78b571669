"""Isolated script execution: interpreter profiles, sessions and the execution host."""

from bepoz_toolkit.execution.host import DEFAULT_STOP_GRACE_SECONDS, ExecutionHost
from bepoz_toolkit.execution.interpreters import InterpreterProfile, RuntimeKind
from bepoz_toolkit.execution.models import (
    ExecutionHostBusyError,
    ExecutionHostError,
    ExecutionOutcome,
    ExecutionRequest,
    ExecutionResult,
    HostState,
    SessionStartError,
)
from bepoz_toolkit.execution.session import InterpreterSession, Session, SessionFactory

__all__ = [
    "DEFAULT_STOP_GRACE_SECONDS",
    "ExecutionHost",
    "ExecutionHostBusyError",
    "ExecutionHostError",
    "ExecutionOutcome",
    "ExecutionRequest",
    "ExecutionResult",
    "HostState",
    "InterpreterProfile",
    "InterpreterSession",
    "RuntimeKind",
    "Session",
    "SessionFactory",
    "SessionStartError",
]
