"""
bepoz-toolkit — interpreter session

File: src/bepoz_toolkit/execution/session.py

Purpose
- Own one interpreter child process: spawn it, multiplex its stdout/stderr
  lines in arrival order, and stop it cooperatively.

Functional requirements
- A session is single-use; the host creates a fresh one per run.
- The child gets its own process group so a stop reaches grandchildren too.
- ``stop`` never blocks: it signals termination and escalates to a kill after
  the grace period on a timer thread.
"""

from __future__ import annotations

import os
import queue
import signal
import subprocess
import sys
import threading
from collections.abc import Iterator, Mapping, Sequence
from pathlib import Path
from typing import IO, Final, Protocol

from bepoz_toolkit.execution.models import SessionStartError

STDOUT: Final[str] = "stdout"
STDERR: Final[str] = "stderr"

_READER_JOIN_SECONDS: Final[float] = 2.0


class Session(Protocol):
    def start(self) -> None: ...

    def events(self) -> Iterator[tuple[str, str]]: ...

    def wait(self) -> int: ...

    def stop(self, grace_seconds: float) -> bool: ...

    def close(self) -> None: ...


class SessionFactory(Protocol):
    def __call__(self, command: Sequence[str], *, cwd: Path | None = None) -> Session: ...


class InterpreterSession:
    """Streams ``(channel, line)`` events from one child interpreter process."""

    def __init__(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        if not command:
            raise ValueError("command must not be empty")
        self._command = [str(part) for part in command]
        self._cwd = cwd
        self._env = None if env is None else dict(env)
        self._process: subprocess.Popen[str] | None = None
        self._events: queue.Queue[tuple[str, str | None]] = queue.Queue()
        self._readers: list[threading.Thread] = []
        self._kill_timer: threading.Timer | None = None
        self._lock = threading.Lock()

    @property
    def command(self) -> list[str]:
        return list(self._command)

    @property
    def pid(self) -> int | None:
        return None if self._process is None else self._process.pid

    def start(self) -> None:
        if self._process is not None:
            raise SessionStartError("session already started")

        kwargs: dict[str, object] = {}
        if sys.platform == "win32":
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        try:
            process = subprocess.Popen(
                self._command,
                cwd=self._cwd,
                env=self._env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                **kwargs,
            )
        except OSError as exc:
            raise SessionStartError(
                f"failed to start interpreter {self._command[0]!r}: {exc}"
            ) from exc

        self._process = process
        assert process.stdout is not None
        assert process.stderr is not None
        for channel, stream in ((STDOUT, process.stdout), (STDERR, process.stderr)):
            reader = threading.Thread(
                target=self._pump,
                args=(channel, stream),
                name=f"bepoz-session-{channel}-{process.pid}",
                daemon=True,
            )
            reader.start()
            self._readers.append(reader)

    def events(self) -> Iterator[tuple[str, str]]:
        """Yield lines until both streams reach EOF."""

        open_streams = len(self._readers)
        while open_streams:
            channel, line = self._events.get()
            if line is None:
                open_streams -= 1
                continue
            yield channel, line.rstrip("\r\n")

    def wait(self) -> int:
        if self._process is None:
            raise SessionStartError("session was never started")
        return self._process.wait()

    def stop(self, grace_seconds: float) -> bool:
        """Ask the child to terminate; True only when it was still running."""

        with self._lock:
            process = self._process
            if process is None or process.poll() is not None:
                return False
            _signal_group(process, kill=False)
            if self._kill_timer is None:
                self._kill_timer = threading.Timer(
                    max(grace_seconds, 0.0), self._kill_if_alive
                )
                self._kill_timer.daemon = True
                self._kill_timer.start()
        return True

    def close(self) -> None:
        with self._lock:
            timer, self._kill_timer = self._kill_timer, None
        if timer is not None:
            timer.cancel()

        process = self._process
        if process is None:
            return
        if process.poll() is None:
            _signal_group(process, kill=True)
            process.wait()
        for reader in self._readers:
            reader.join(timeout=_READER_JOIN_SECONDS)
        for stream in (process.stdout, process.stderr):
            if stream is not None:
                stream.close()

    def _pump(self, channel: str, stream: IO[str]) -> None:
        try:
            for line in stream:
                self._events.put((channel, line))
        except (OSError, ValueError):
            # Stream closed underneath the reader by close(); EOF is still signalled.
            pass
        finally:
            self._events.put((channel, None))

    def _kill_if_alive(self) -> None:
        process = self._process
        if process is not None and process.poll() is None:
            _signal_group(process, kill=True)


def _signal_group(process: subprocess.Popen[str], *, kill: bool) -> None:
    if sys.platform != "win32" and hasattr(os, "killpg"):
        try:
            os.killpg(os.getpgid(process.pid), signal.SIGKILL if kill else signal.SIGTERM)
            return
        except (ProcessLookupError, PermissionError):
            pass
    try:
        if kill:
            process.kill()
        else:
            process.terminate()
    except ProcessLookupError:
        pass


__all__ = [
    "InterpreterSession",
    "STDERR",
    "STDOUT",
    "Session",
    "SessionFactory",
]
