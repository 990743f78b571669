"""
bepoz-toolkit — execution models

File: src/bepoz_toolkit/execution/models.py

Purpose
- Request/result types, host states and the error taxonomy of the execution host.

Functional requirements
- ``success`` holds iff the exit probe indicates normal termination and no
  error-stream entries arrived.
- Exit code is ``-1`` when there was no process or no probe.
- Cancelled runs are never successful and carry a distinct message.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

try:
    from datetime import UTC
except ImportError:
    UTC = timezone.utc  # noqa: UP017

LineSink = Callable[[str], None]
ProgressSink = Callable[[int], None]


class ExecutionHostError(RuntimeError):
    """Base error for construction-level execution host failures."""


class ExecutionHostBusyError(ExecutionHostError):
    """Raised when a run is requested while another run is active on the host."""


class SessionStartError(ExecutionHostError):
    """Raised when an interpreter session cannot be spawned."""


class HostState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ExecutionOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    MISSING_SCRIPT = "missing-script"
    ENVIRONMENT_FAULT = "environment-fault"

    @property
    def host_state(self) -> HostState:
        if self is ExecutionOutcome.COMPLETED:
            return HostState.COMPLETED
        if self is ExecutionOutcome.CANCELLED:
            return HostState.CANCELLED
        return HostState.FAILED


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    script_path: Path
    parameters: Mapping[str, Any] = field(default_factory=dict)
    on_output: LineSink | None = None
    on_error: LineSink | None = None
    on_progress: ProgressSink | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "script_path", Path(self.script_path))
        object.__setattr__(self, "parameters", dict(self.parameters or {}))


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    success: bool
    exit_code: int
    output: str
    error_output: str
    duration_ms: int
    completed_at: datetime
    outcome: ExecutionOutcome

    @property
    def cancelled(self) -> bool:
        return self.outcome is ExecutionOutcome.CANCELLED

    @classmethod
    def failure(
        cls,
        outcome: ExecutionOutcome,
        message: str,
        *,
        duration_ms: int = 0,
        output: str = "",
        exit_code: int = -1,
    ) -> ExecutionResult:
        return cls(
            success=False,
            exit_code=exit_code,
            output=output,
            error_output=message,
            duration_ms=duration_ms,
            completed_at=datetime.now(UTC),
            outcome=outcome,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "exit_code": self.exit_code,
            "output": self.output,
            "error_output": self.error_output,
            "duration_ms": self.duration_ms,
            "completed_at": self.completed_at.isoformat().replace("+00:00", "Z"),
            "outcome": self.outcome.value,
        }


__all__ = [
    "ExecutionHostBusyError",
    "ExecutionHostError",
    "ExecutionOutcome",
    "ExecutionRequest",
    "ExecutionResult",
    "HostState",
    "LineSink",
    "ProgressSink",
    "SessionStartError",
]
