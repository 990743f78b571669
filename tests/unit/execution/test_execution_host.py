"""Execution host tests against real child interpreters (the Python runtime profile)."""

from __future__ import annotations

import asyncio
import sys
import textwrap
import threading
from typing import TYPE_CHECKING

import pytest

from bepoz_toolkit.constants import CANCELLED_MESSAGE
from bepoz_toolkit.execution.host import ExecutionHost
from bepoz_toolkit.execution.interpreters import InterpreterProfile
from bepoz_toolkit.execution.models import ExecutionOutcome, ExecutionRequest, HostState

if TYPE_CHECKING:
    from pathlib import Path


def _script(tmp_path: Path, body: str, name: str = "tool.py") -> Path:
    path = tmp_path / name
    path.write_text(textwrap.dedent(body), encoding="utf-8")
    return path


def _host() -> ExecutionHost:
    return ExecutionHost(InterpreterProfile.python(sys.executable), stop_grace_seconds=1.0)


@pytest.mark.asyncio
async def test_successful_run_collects_output(tmp_path: Path) -> None:
    script = _script(
        tmp_path,
        """
        print("line one")
        print("line two")
        """,
    )
    seen: list[str] = []
    host = _host()

    result = await host.execute(ExecutionRequest(script, on_output=seen.append))

    assert result.success is True
    assert result.outcome is ExecutionOutcome.COMPLETED
    assert result.exit_code == 0
    assert result.output == "line one\nline two"
    assert result.error_output == ""
    assert seen == ["line one", "line two"]
    assert result.duration_ms >= 0
    assert host.state is HostState.IDLE
    assert host.last_outcome is HostState.COMPLETED


@pytest.mark.asyncio
async def test_warning_verbose_and_progress_categories(tmp_path: Path) -> None:
    script = _script(
        tmp_path,
        """
        import logging
        import warnings

        host.progress(10)
        warnings.warn("disk nearly full")
        logging.getLogger("tool").info("checking tables")
        host.verbose("detail")
        host.progress(250)
        host.progress(100)
        """,
    )
    output: list[str] = []
    progress: list[int] = []

    result = await _host().execute(
        ExecutionRequest(script, on_output=output.append, on_progress=progress.append)
    )

    assert result.success is True
    assert progress == [10, 100]
    assert output == [
        "WARNING: UserWarning: disk nearly full",
        "VERBOSE: checking tables",
        "VERBOSE: detail",
    ]


@pytest.mark.asyncio
async def test_parameters_reach_run_and_results_are_emitted(tmp_path: Path) -> None:
    script = _script(
        tmp_path,
        """
        def run(venue, dry_run=False):
            yield f"venue={venue}"
            yield f"dry_run={dry_run}"
        """,
    )

    result = await _host().execute(
        ExecutionRequest(script, parameters={"venue": "Main Bar", "dry_run": True})
    )

    assert result.success is True
    assert result.output == "venue=Main Bar\ndry_run=True"


@pytest.mark.asyncio
async def test_non_zero_exit_fails_without_error_output(tmp_path: Path) -> None:
    script = _script(
        tmp_path,
        """
        import sys
        print("about to fail")
        sys.exit(3)
        """,
    )

    result = await _host().execute(ExecutionRequest(script))

    assert result.success is False
    assert result.outcome is ExecutionOutcome.FAILED
    assert result.exit_code == 3
    assert result.output == "about to fail"


@pytest.mark.asyncio
async def test_stderr_entries_fail_the_run_even_with_exit_zero(tmp_path: Path) -> None:
    script = _script(
        tmp_path,
        """
        import sys
        print("partial")
        print("table locked", file=sys.stderr)
        """,
    )
    errors: list[str] = []

    result = await _host().execute(ExecutionRequest(script, on_error=errors.append))

    assert result.exit_code == 0
    assert result.success is False
    assert result.error_output == "table locked"
    assert errors == ["table locked"]


@pytest.mark.asyncio
async def test_uncaught_exception_is_an_error_with_exit_one(tmp_path: Path) -> None:
    script = _script(tmp_path, 'raise RuntimeError("boom")\n')

    result = await _host().execute(ExecutionRequest(script))

    assert result.success is False
    assert result.exit_code == 1
    assert "RuntimeError: boom" in result.error_output


@pytest.mark.asyncio
async def test_missing_script_short_circuits(tmp_path: Path) -> None:
    missing = tmp_path / "gone.py"
    host = _host()

    result = await host.execute(ExecutionRequest(missing))

    assert result.success is False
    assert result.outcome is ExecutionOutcome.MISSING_SCRIPT
    assert result.exit_code == -1
    assert result.error_output == f"Script file not found: {missing}"
    assert host.state is HostState.IDLE
    assert host.last_outcome is None


@pytest.mark.asyncio
async def test_stop_cancels_a_running_script(tmp_path: Path) -> None:
    script = _script(
        tmp_path,
        """
        import time
        print("started", flush=True)
        time.sleep(30)
        print("never")
        """,
    )
    started = threading.Event()

    def on_output(line: str) -> None:
        if line == "started":
            started.set()

    host = _host()
    task = asyncio.create_task(host.execute(ExecutionRequest(script, on_output=on_output)))
    assert await asyncio.to_thread(started.wait, 10.0)
    assert host.state is HostState.RUNNING

    assert host.stop() is True
    result = await asyncio.wait_for(task, timeout=10.0)

    assert result.cancelled is True
    assert result.success is False
    assert result.error_output == CANCELLED_MESSAGE
    assert result.output == "started"
    assert host.state is HostState.IDLE
    assert host.last_outcome is HostState.CANCELLED


@pytest.mark.asyncio
async def test_host_accepts_a_new_run_after_a_cancelled_one(tmp_path: Path) -> None:
    slow = _script(
        tmp_path,
        """
        import time
        print("started", flush=True)
        time.sleep(30)
        """,
        name="slow.py",
    )
    quick = _script(tmp_path, 'print("ok")\n', name="quick.py")
    started = threading.Event()
    host = _host()

    task = asyncio.create_task(
        host.execute(ExecutionRequest(slow, on_output=lambda line: started.set()))
    )
    assert await asyncio.to_thread(started.wait, 10.0)
    assert host.stop() is True
    cancelled = await asyncio.wait_for(task, timeout=10.0)
    assert cancelled.outcome is ExecutionOutcome.CANCELLED
    assert host.state is HostState.IDLE

    result = await host.execute(ExecutionRequest(quick))

    assert result.outcome is ExecutionOutcome.COMPLETED
    assert result.output == "ok"
    assert host.state is HostState.IDLE
    assert host.last_outcome is HostState.COMPLETED


def test_stop_when_idle_is_a_no_op() -> None:
    host = _host()
    assert host.stop() is False
    assert host.stop() is False


@pytest.mark.asyncio
async def test_host_is_reusable_after_failure(tmp_path: Path) -> None:
    failing = _script(tmp_path, "raise SystemExit(2)\n", name="fail.py")
    passing = _script(tmp_path, 'print("ok")\n', name="pass.py")
    host = _host()

    first = await host.execute(ExecutionRequest(failing))
    second = await host.execute(ExecutionRequest(passing))

    assert first.success is False
    assert second.success is True
    assert host.last_outcome is HostState.COMPLETED


def test_blocking_run_variant(tmp_path: Path) -> None:
    script = _script(tmp_path, 'print("sync")\n')

    result = _host().run(ExecutionRequest(script))

    assert result.success is True
    assert result.output == "sync"


@pytest.mark.asyncio
async def test_sink_failure_does_not_abort_run(tmp_path: Path) -> None:
    script = _script(tmp_path, 'print("a")\nprint("b")\n')

    def exploding(line: str) -> None:
        raise RuntimeError("ui gone")

    result = await _host().execute(ExecutionRequest(script, on_output=exploding))

    assert result.success is True
    assert result.output == "a\nb"


@pytest.mark.asyncio
async def test_missing_runtime_is_an_environment_fault(tmp_path: Path) -> None:
    script = _script(tmp_path, 'print("x")\n')
    host = ExecutionHost(InterpreterProfile.python(str(tmp_path / "no-such-python")))

    result = await host.execute(ExecutionRequest(script))

    assert result.success is False
    assert result.outcome is ExecutionOutcome.ENVIRONMENT_FAULT
    assert "No Python runtime is available" in result.error_output
    assert host.state is HostState.IDLE
