"""Output rendering for the bepoz-toolkit CLI.

File: src/bepoz_toolkit/ui/render.py

Purpose
- Plain-text rendering of tables, key/value pairs, check reports and live tool
  output, with ANSI colour only on an interactive terminal.

Functional requirements
- Respect the ``NO_COLOR`` environment variable and the ``--no-color`` flag.
- Live output lines go to stdout, error lines to stderr.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, Final, TextIO

if TYPE_CHECKING:
    from collections.abc import Sequence

    from bepoz_toolkit.preflight.models import PreFlightCheckResult

_GREEN: Final[str] = "\033[32m"
_RED: Final[str] = "\033[31m"
_YELLOW: Final[str] = "\033[33m"
_RESET: Final[str] = "\033[0m"


def _color_allowed(no_color_flag: bool, stream: TextIO) -> bool:
    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


def format_bytes(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{int(value)} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


class CLIRenderer:
    """Deterministic plain-text renderer."""

    def __init__(
        self,
        *,
        no_color: bool = False,
        verbose: bool = False,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> None:
        self.verbose = verbose
        self._out = stdout if stdout is not None else sys.stdout
        self._err = stderr if stderr is not None else sys.stderr
        self._color = _color_allowed(no_color, self._out)

    def _paint(self, text: str, color: str) -> str:
        return f"{color}{text}{_RESET}" if self._color else text

    def heading(self, text: str) -> None:
        print(text, file=self._out)

    def kv(self, key: str, value: object) -> None:
        print(f"{key}: {value}", file=self._out)

    def text(self, line: str) -> None:
        print(line, file=self._out)

    def section(self, title: str) -> None:
        print(f"\n{title}", file=self._out)

    def warning(self, text: str) -> None:
        print(f"  {self._paint('Warning:', _YELLOW)} {text}", file=self._out)

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[object]],
        *,
        title: str | None = None,
    ) -> None:
        if title:
            self.section(title)
        if not rows:
            print("  (none)", file=self._out)
            return

        widths = [len(header) for header in headers]
        for row in rows:
            for index, cell in enumerate(row[: len(headers)]):
                widths[index] = max(widths[index], len(str(cell)))

        def _pad(cells: Sequence[object]) -> str:
            return "  ".join(
                str(cells[index] if index < len(cells) else "").ljust(widths[index])
                for index in range(len(headers))
            ).rstrip()

        print(f"  {_pad(list(headers))}", file=self._out)
        print(f"  {'  '.join('-' * width for width in widths)}", file=self._out)
        for row in rows:
            print(f"  {_pad(list(row))}", file=self._out)

    def check(self, result: PreFlightCheckResult) -> None:
        """One pre-flight result; failures carry their remediation hint."""

        if result.passed:
            print(f"  {self._paint('PASS', _GREEN)}  {result.check_name}: {result.message}", file=self._out)
            return
        print(f"  {self._paint('FAIL', _RED)}  {result.check_name}: {result.message}", file=self._out)
        print(f"        -> {result.hint} [{result.remediation.value}]", file=self._out)

    def output_line(self, line: str) -> None:
        print(line, file=self._out, flush=True)

    def error_line(self, line: str) -> None:
        print(self._paint(line, _RED), file=self._err, flush=True)

    def progress(self, percent: int) -> None:
        if self.verbose:
            print(f"[{percent:3d}%]", file=self._err, flush=True)


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    return CLIRenderer(no_color=no_color, verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer", "format_bytes"]
