"""Execution host tests with scripted sessions: protocol parsing, busy rejection, start faults."""

from __future__ import annotations

import asyncio
import sys
import threading
from typing import TYPE_CHECKING

import pytest

from bepoz_toolkit.execution.host import ExecutionHost
from bepoz_toolkit.execution.interpreters import InterpreterProfile
from bepoz_toolkit.execution.models import (
    ExecutionHostBusyError,
    ExecutionOutcome,
    ExecutionRequest,
    HostState,
    SessionStartError,
)
from bepoz_toolkit.execution.session import STDERR, STDOUT

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence
    from pathlib import Path


class _ScriptedSession:
    def __init__(
        self,
        events: list[tuple[str, str]],
        *,
        returncode: int = 0,
        gate: threading.Event | None = None,
        start_error: str | None = None,
    ) -> None:
        self._events = events
        self._returncode = returncode
        self._gate = gate
        self._start_error = start_error
        self.closed = False
        self.stopped = False

    def start(self) -> None:
        if self._start_error is not None:
            raise SessionStartError(self._start_error)

    def events(self) -> Iterator[tuple[str, str]]:
        if self._gate is not None:
            self._gate.wait(timeout=10.0)
        yield from self._events

    def wait(self) -> int:
        return self._returncode

    def stop(self, grace_seconds: float) -> bool:
        self.stopped = True
        if self._gate is not None:
            self._gate.set()
        return True

    def close(self) -> None:
        self.closed = True


class _Factory:
    def __init__(self, *sessions: _ScriptedSession) -> None:
        self._sessions = list(sessions)
        self.commands: list[list[str]] = []
        self.cwds: list[Path | None] = []

    def __call__(self, command: Sequence[str], *, cwd: Path | None = None) -> _ScriptedSession:
        self.commands.append(list(command))
        self.cwds.append(cwd)
        return self._sessions.pop(0)


@pytest.fixture
def script(tmp_path: Path) -> Path:
    path = tmp_path / "tool.py"
    path.write_text("pass\n", encoding="utf-8")
    return path


def _host(factory: _Factory) -> ExecutionHost:
    return ExecutionHost(InterpreterProfile.python(sys.executable), session_factory=factory)


def test_exit_probe_overrides_process_returncode(script: Path) -> None:
    session = _ScriptedSession(
        [(STDOUT, "::result::42 rows"), (STDOUT, "::exit::5")],
        returncode=0,
    )

    result = _host(_Factory(session)).run(ExecutionRequest(script))

    assert result.exit_code == 5
    assert result.success is False
    assert result.output == "42 rows"
    assert session.closed is True


def test_malformed_markers_are_tolerated(script: Path) -> None:
    progress: list[int] = []
    session = _ScriptedSession(
        [
            (STDOUT, "::progress::abc"),
            (STDOUT, "::progress::-1"),
            (STDOUT, "::progress::55"),
            (STDOUT, "::exit::nope"),
            (STDOUT, "plain"),
        ],
        returncode=0,
    )

    result = _host(_Factory(session)).run(ExecutionRequest(script, on_progress=progress.append))

    assert progress == [55]
    assert result.exit_code == 0
    assert result.success is True
    assert result.output == "plain"


def test_blank_stderr_lines_are_not_errors(script: Path) -> None:
    session = _ScriptedSession([(STDERR, "   "), (STDOUT, "done")], returncode=0)

    result = _host(_Factory(session)).run(ExecutionRequest(script))

    assert result.success is True
    assert result.error_output == ""


def test_session_start_failure_is_an_environment_fault(script: Path) -> None:
    session = _ScriptedSession([], start_error="failed to start interpreter 'python': denied")
    host = _host(_Factory(session))

    result = host.run(ExecutionRequest(script))

    assert result.outcome is ExecutionOutcome.ENVIRONMENT_FAULT
    assert result.exit_code == -1
    assert "denied" in result.error_output
    assert session.closed is True
    assert host.state is HostState.IDLE
    assert host.last_outcome is HostState.FAILED


def test_missing_script_never_creates_a_session(tmp_path: Path) -> None:
    factory = _Factory()

    result = _host(factory).run(ExecutionRequest(tmp_path / "missing.py"))

    assert result.outcome is ExecutionOutcome.MISSING_SCRIPT
    assert factory.commands == []


def test_launch_command_and_working_directory(script: Path) -> None:
    factory = _Factory(_ScriptedSession([]))

    _host(factory).run(ExecutionRequest(script, parameters={"venue": 3}))

    command = factory.commands[0]
    assert command[0] == sys.executable
    assert command[-2] == str(script)
    assert command[-1] == '{"venue": 3}'
    assert factory.cwds == [script.parent]


@pytest.mark.asyncio
async def test_second_run_is_rejected_while_busy(script: Path) -> None:
    gate = threading.Event()
    first_session = _ScriptedSession([(STDOUT, "slow")], gate=gate)
    host = _host(_Factory(first_session))

    first = asyncio.create_task(host.execute(ExecutionRequest(script)))
    for _ in range(200):
        if host.is_busy:
            break
        await asyncio.sleep(0.01)
    assert host.is_busy is True

    with pytest.raises(ExecutionHostBusyError):
        await host.execute(ExecutionRequest(script))

    gate.set()
    result = await first
    assert result.success is True
    assert host.is_busy is False


@pytest.mark.asyncio
async def test_stop_on_scripted_session_reports_cancelled(script: Path) -> None:
    gate = threading.Event()
    session = _ScriptedSession([(STDOUT, "partial")], returncode=-15, gate=gate)
    host = _host(_Factory(session))

    task = asyncio.create_task(host.execute(ExecutionRequest(script)))
    for _ in range(200):
        if host.state is HostState.RUNNING:
            break
        await asyncio.sleep(0.01)

    assert host.stop() is True
    result = await task

    assert session.stopped is True
    assert result.outcome is ExecutionOutcome.CANCELLED
    assert result.output == "partial"
    assert result.exit_code == -15
    assert host.last_outcome is HostState.CANCELLED


def test_negative_grace_is_rejected() -> None:
    with pytest.raises(ValueError):
        ExecutionHost(InterpreterProfile.python(sys.executable), stop_grace_seconds=-1)
