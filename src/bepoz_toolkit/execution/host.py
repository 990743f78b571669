"""
bepoz-toolkit — execution host

File: src/bepoz_toolkit/execution/host.py

Purpose
- Run one tool script at a time in a fresh interpreter session, streaming its
  output categories to caller sinks and producing one ``ExecutionResult``.

Functional requirements
- A missing script short-circuits before any session is created.
- A second run while one is active is rejected with ``ExecutionHostBusyError``.
- Warnings and verbose lines are folded into the output stream with
  ``WARNING: `` / ``VERBOSE: `` prefixes; progress outside 0..100 is dropped.
- Success requires an empty error stream and an exit probe of 0.
- ``stop`` is cooperative and idempotent; the host always returns to IDLE.

Non-functional requirements
- The blocking drive loop runs on a worker thread; sinks are called from it.
- Sink failures are logged and never abort the run.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Final

import structlog

from bepoz_toolkit.constants import CANCELLED_MESSAGE, SCRIPT_NOT_FOUND_TEMPLATE
from bepoz_toolkit.execution.interpreters import InterpreterProfile
from bepoz_toolkit.execution.models import (
    ExecutionHostBusyError,
    ExecutionOutcome,
    ExecutionRequest,
    ExecutionResult,
    HostState,
    SessionStartError,
)
from bepoz_toolkit.execution.session import (
    STDERR,
    InterpreterSession,
    Session,
    SessionFactory,
)
from bepoz_toolkit.utils.concurrency import CancellationToken

try:
    from datetime import UTC
except ImportError:
    UTC = timezone.utc  # noqa: UP017

DEFAULT_STOP_GRACE_SECONDS: Final[float] = 5.0

_MARKER_WARNING: Final[str] = "::warning::"
_MARKER_VERBOSE: Final[str] = "::verbose::"
_MARKER_PROGRESS: Final[str] = "::progress::"
_MARKER_RESULT: Final[str] = "::result::"
_MARKER_EXIT: Final[str] = "::exit::"


@dataclass(slots=True)
class _ActiveRun:
    token: CancellationToken = field(default_factory=CancellationToken)
    session: Session | None = None
    started: bool = False
    stop_delivered: bool = False


@dataclass(slots=True)
class _Collected:
    output: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    exit_probe: int | None = None


class ExecutionHost:
    """Isolated script runner: one live interpreter session per run, one run at a time."""

    def __init__(
        self,
        profile: InterpreterProfile | None = None,
        *,
        execution_policy: str = "Bypass",
        stop_grace_seconds: float = DEFAULT_STOP_GRACE_SECONDS,
        session_factory: SessionFactory | None = None,
        logger: Any | None = None,
    ) -> None:
        if stop_grace_seconds < 0:
            raise ValueError("stop_grace_seconds must be >= 0")
        self._profile = profile if profile is not None else InterpreterProfile.powershell()
        self._execution_policy = execution_policy
        self._stop_grace_seconds = stop_grace_seconds
        self._session_factory: SessionFactory = (
            session_factory if session_factory is not None else InterpreterSession
        )
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._lock = threading.Lock()
        self._active: _ActiveRun | None = None
        self._state = HostState.IDLE
        self._last_outcome: HostState | None = None

    @property
    def profile(self) -> InterpreterProfile:
        return self._profile

    @property
    def state(self) -> HostState:
        with self._lock:
            return self._state

    @property
    def last_outcome(self) -> HostState | None:
        with self._lock:
            return self._last_outcome

    @property
    def is_busy(self) -> bool:
        with self._lock:
            return self._active is not None

    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Run ``request`` on a worker thread; raises ``ExecutionHostBusyError`` if busy."""

        missing = self._missing_script(request)
        if missing is not None:
            return missing

        run = self._claim()
        try:
            return await asyncio.to_thread(self._drive, run, request)
        except asyncio.CancelledError:
            self.stop()
            with self._lock:
                if not run.started:
                    self._release(run, ExecutionOutcome.CANCELLED)
            raise

    def run(self, request: ExecutionRequest) -> ExecutionResult:
        """Blocking variant of :meth:`execute` for callers without an event loop."""

        missing = self._missing_script(request)
        if missing is not None:
            return missing
        return self._drive(self._claim(), request)

    def stop(self) -> bool:
        """Cancel the active run; False when nothing is running or it already finished."""

        with self._lock:
            run = self._active
            if run is None:
                return False
            run.token.cancel()
            session = run.session
            # Session.stop only signals, so it is safe under the lock; the drive
            # thread must not judge the outcome before stop_delivered is set.
            delivered = session is not None and session.stop(self._stop_grace_seconds)
            if delivered:
                run.stop_delivered = True

        if session is None:
            self._logger.info("execution_stop_requested", live_session=False)
            return True
        self._logger.info("execution_stop_requested", live_session=delivered)
        return delivered

    def _missing_script(self, request: ExecutionRequest) -> ExecutionResult | None:
        if request.script_path.is_file():
            return None
        message = SCRIPT_NOT_FOUND_TEMPLATE.format(path=request.script_path)
        self._logger.warning("execution_script_missing", script_path=str(request.script_path))
        return ExecutionResult.failure(ExecutionOutcome.MISSING_SCRIPT, message)

    def _claim(self) -> _ActiveRun:
        with self._lock:
            if self._active is not None:
                raise ExecutionHostBusyError("a script is already running on this host")
            run = _ActiveRun()
            self._active = run
            self._state = HostState.STARTING
        return run

    def _release(self, run: _ActiveRun, outcome: ExecutionOutcome) -> None:
        # Caller holds self._lock.
        if self._active is run:
            self._active = None
            self._last_outcome = outcome.host_state
            self._state = HostState.IDLE

    def _drive(self, run: _ActiveRun, request: ExecutionRequest) -> ExecutionResult:
        with self._lock:
            if self._active is not run:
                return ExecutionResult.failure(ExecutionOutcome.CANCELLED, CANCELLED_MESSAGE)
            run.started = True

        started = time.monotonic()
        outcome = ExecutionOutcome.FAILED
        try:
            result = self._run_session(run, request, started)
            outcome = result.outcome
            self._logger.info(
                "execution_finished",
                script_path=str(request.script_path),
                outcome=result.outcome.value,
                exit_code=result.exit_code,
                duration_ms=result.duration_ms,
            )
            return result
        finally:
            with self._lock:
                self._release(run, outcome)

    def _run_session(
        self, run: _ActiveRun, request: ExecutionRequest, started: float
    ) -> ExecutionResult:
        if run.token.is_cancelled:
            return self._cancelled(started, _Collected(), exit_code=-1)

        executable = self._profile.find_executable()
        if executable is None:
            tried = ", ".join(self._profile.executables)
            return ExecutionResult.failure(
                ExecutionOutcome.ENVIRONMENT_FAULT,
                f"No {self._profile.label} runtime is available (tried: {tried}).",
                duration_ms=_elapsed_ms(started),
            )

        command = self._profile.launch_command(
            executable,
            request.script_path,
            request.parameters,
            execution_policy=self._execution_policy,
        )
        session = self._session_factory(command, cwd=request.script_path.parent)
        with self._lock:
            run.session = session

        try:
            try:
                session.start()
            except SessionStartError as exc:
                self._logger.error("execution_session_start_failed", error=str(exc))
                return ExecutionResult.failure(
                    ExecutionOutcome.ENVIRONMENT_FAULT,
                    str(exc),
                    duration_ms=_elapsed_ms(started),
                )

            with self._lock:
                self._state = HostState.RUNNING
            self._logger.info(
                "execution_started",
                script_path=str(request.script_path),
                executable=executable,
                runtime=self._profile.kind.value,
            )
            with self._lock:
                if run.token.is_cancelled and session.stop(self._stop_grace_seconds):
                    run.stop_delivered = True

            collected = self._pump(session, request)
            returncode = session.wait()
        finally:
            session.close()

        with self._lock:
            cancelled = run.token.is_cancelled and run.stop_delivered
        if cancelled:
            return self._cancelled(started, collected, exit_code=returncode)

        probe = collected.exit_probe if collected.exit_probe is not None else returncode
        success = not collected.errors and probe == 0
        return ExecutionResult(
            success=success,
            exit_code=probe,
            output="\n".join(collected.output),
            error_output="\n".join(collected.errors),
            duration_ms=_elapsed_ms(started),
            completed_at=datetime.now(UTC),
            outcome=ExecutionOutcome.COMPLETED if success else ExecutionOutcome.FAILED,
        )

    def _pump(self, session: Session, request: ExecutionRequest) -> _Collected:
        collected = _Collected()
        for channel, line in session.events():
            if channel == STDERR:
                if line.strip():
                    collected.errors.append(line)
                    self._deliver(request.on_error, line)
                continue

            if line.startswith(_MARKER_PROGRESS):
                percent = _parse_int(line[len(_MARKER_PROGRESS):])
                if percent is not None and 0 <= percent <= 100:
                    self._deliver(request.on_progress, percent)
                continue
            if line.startswith(_MARKER_EXIT):
                probe = _parse_int(line[len(_MARKER_EXIT):])
                if probe is not None:
                    collected.exit_probe = probe
                continue

            if line.startswith(_MARKER_WARNING):
                text = "WARNING: " + line[len(_MARKER_WARNING):]
            elif line.startswith(_MARKER_VERBOSE):
                text = "VERBOSE: " + line[len(_MARKER_VERBOSE):]
            elif line.startswith(_MARKER_RESULT):
                text = line[len(_MARKER_RESULT):]
            else:
                text = line
            collected.output.append(text)
            self._deliver(request.on_output, text)
        return collected

    def _deliver(self, sink: Any, value: object) -> None:
        if sink is None:
            return
        try:
            sink(value)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("execution_sink_failed", error=str(exc))

    def _cancelled(self, started: float, collected: _Collected, *, exit_code: int) -> ExecutionResult:
        return ExecutionResult(
            success=False,
            exit_code=exit_code,
            output="\n".join(collected.output),
            error_output=CANCELLED_MESSAGE,
            duration_ms=_elapsed_ms(started),
            completed_at=datetime.now(UTC),
            outcome=ExecutionOutcome.CANCELLED,
        )


def _parse_int(text: str) -> int | None:
    try:
        return int(text.strip())
    except ValueError:
        return None


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.monotonic() - started) * 1000))


__all__ = [
    "DEFAULT_STOP_GRACE_SECONDS",
    "ExecutionHost",
]
