"""Plain-text renderer output contracts."""

from __future__ import annotations

import io

import pytest

from bepoz_toolkit.preflight.models import PreFlightCheckResult, RemediationAction
from bepoz_toolkit.ui.render import CLIRenderer, format_bytes


class _TTY(io.StringIO):
    def isatty(self) -> bool:
        return True


def _renderer(**kwargs: object) -> tuple[CLIRenderer, io.StringIO, io.StringIO]:
    out, err = io.StringIO(), io.StringIO()
    return CLIRenderer(stdout=out, stderr=err, **kwargs), out, err  # type: ignore[arg-type]


@pytest.mark.parametrize(
    ("size", "expected"),
    [(0, "0 B"), (1023, "1023 B"), (1536, "1.5 KB"), (5 * 1024**2, "5.0 MB"), (3 * 1024**4, "3072.0 GB")],
)
def test_format_bytes(size: int, expected: str) -> None:
    assert format_bytes(size) == expected


def test_table_pads_columns_and_handles_empty_rows() -> None:
    renderer, out, _ = _renderer()

    renderer.table(("ID", "NAME"), [("reset-till", "Reset Till"), ("x", "Y")], title="Catalog")
    renderer.table(("ID",), [])

    assert out.getvalue().splitlines() == [
        "",
        "Catalog",
        "  ID          NAME",
        "  ----------  ----------",
        "  reset-till  Reset Till",
        "  x           Y",
        "  (none)",
    ]


def test_failed_check_prints_hint_and_remediation() -> None:
    renderer, out, _ = _renderer()

    renderer.check(PreFlightCheckResult.success("Tool Script", "Script is cached"))
    renderer.check(
        PreFlightCheckResult(
            check_name="Database Connection",
            passed=False,
            message="Connection refused",
            remediation=RemediationAction.RETRY_CONNECTIVITY,
            hint="Check the server name and network",
        )
    )

    lines = out.getvalue().splitlines()
    assert lines[0] == "  PASS  Tool Script: Script is cached"
    assert lines[1] == "  FAIL  Database Connection: Connection refused"
    assert lines[2].endswith("-> Check the server name and network [retry-connectivity]")


def test_live_output_routing_and_verbose_progress() -> None:
    quiet, quiet_out, quiet_err = _renderer()
    quiet.output_line("hello")
    quiet.error_line("boom")
    quiet.progress(40)

    assert quiet_out.getvalue() == "hello\n"
    assert quiet_err.getvalue() == "boom\n"

    verbose, _, verbose_err = _renderer(verbose=True)
    verbose.progress(40)
    assert verbose_err.getvalue() == "[ 40%]\n"


def test_color_only_on_tty_and_respects_no_color(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("NO_COLOR", raising=False)
    tty = _TTY()
    CLIRenderer(stdout=tty).warning("stale")
    assert "\033[33m" in tty.getvalue()

    plain = _TTY()
    CLIRenderer(stdout=plain, no_color=True).warning("stale")
    assert plain.getvalue() == "  Warning: stale\n"

    monkeypatch.setenv("NO_COLOR", "1")
    env_plain = _TTY()
    CLIRenderer(stdout=env_plain).warning("stale")
    assert "\033[" not in env_plain.getvalue()
