"""
bepoz-toolkit — CLI subprocess smoke contracts

File: tests/integration/test_cli_smoke.py

Purpose
- Exercise `python -m bepoz_toolkit` end to end against a local HTTP catalog.
- Verify exit codes, JSON output, and persistent cache/history side effects.
"""

from __future__ import annotations

import functools
import json
import os
import subprocess
import sys
import threading
from collections.abc import Iterator
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"

_MANIFEST = {
    "version": "2026.03",
    "categories": [{"id": "reports", "name": "Reports"}],
    "tools": [
        {
            "id": "venue-report",
            "name": "Venue Report",
            "category": "reports",
            "file": "tools/venue_report.py",
            "parameters": [{"name": "venue", "type": "string", "required": True}],
        },
        {
            "id": "broken-tool",
            "name": "Broken Tool",
            "category": "maintenance",
            "file": "tools/broken.py",
        },
    ],
}

_VENUE_REPORT = """\
def run(venue):
    print("::progress::50", flush=True)
    return f"report for {venue}"
"""


class _QuietHandler(SimpleHTTPRequestHandler):
    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        return None


def _write(path: Path, contents: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(contents, encoding="utf-8")


@pytest.fixture()
def catalog_url(tmp_path: Path) -> Iterator[str]:
    root = tmp_path / "catalog"
    _write(root / "manifest.json", json.dumps(_MANIFEST))
    _write(root / "tools" / "venue_report.py", _VENUE_REPORT)
    _write(root / "tools" / "broken.py", "raise SystemExit(3)\n")

    server = ThreadingHTTPServer(
        ("127.0.0.1", 0), functools.partial(_QuietHandler, directory=str(root))
    )
    thread = threading.Thread(target=server.serve_forever, name="catalog-http", daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5.0)


@pytest.fixture()
def workspace(tmp_path: Path, catalog_url: str) -> Path:
    root = tmp_path / "site"
    _write(
        root / "toolkit.toml",
        f"""
[catalog]
base_url = "{catalog_url}"
timeout_seconds = 5.0

[execution]
runtime = "python"
stop_grace_seconds = 1.0
""".strip(),
    )
    return root


def _run_cli(workspace: Path, *args: str) -> subprocess.CompletedProcess[str]:
    env = {
        key: value
        for key, value in os.environ.items()
        if not key.startswith("BEPOZ_TOOLKIT_") and not key.lower().endswith("_proxy")
    }
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}{os.pathsep}{existing_pythonpath}"
    )
    env["NO_COLOR"] = "1"
    return subprocess.run(
        [sys.executable, "-m", "bepoz_toolkit", *args],
        cwd=workspace,
        text=True,
        capture_output=True,
        check=False,
        env=env,
        timeout=120,
    )


def _json_output(completed: subprocess.CompletedProcess[str]) -> dict[str, object]:
    lines = [line for line in completed.stdout.splitlines() if line.strip()]
    assert lines, completed.stderr
    return json.loads(lines[-1])


def test_tools_lists_catalog_and_caches_manifest(workspace: Path) -> None:
    completed = _run_cli(workspace, "tools", "--json")

    assert completed.returncode == 0, completed.stderr
    payload = _json_output(completed)
    assert payload["version"] == "2026.03"
    assert payload["offline"] is False
    assert [row["id"] for row in payload["tools"]] == ["venue-report", "broken-tool"]
    assert (workspace / "data" / "cache" / "manifest.json").is_file()

    filtered = _json_output(_run_cli(workspace, "tools", "--category", "reports", "--json"))
    assert [row["id"] for row in filtered["tools"]] == ["venue-report"]


def test_tools_falls_back_to_cached_manifest_when_offline(workspace: Path) -> None:
    assert _run_cli(workspace, "tools", "--json").returncode == 0

    completed = _run_cli(
        workspace, "tools", "--json", "--set", "catalog.base_url=http://127.0.0.1:9"
    )

    assert completed.returncode == 0, completed.stderr
    payload = _json_output(completed)
    assert payload["offline"] is True
    assert len(payload["tools"]) == 2


def test_tools_without_network_or_cache_exits_with_network_code(workspace: Path) -> None:
    completed = _run_cli(workspace, "tools", "--set", "catalog.base_url=http://127.0.0.1:9")

    assert completed.returncode == 3
    assert "catalog unavailable" in completed.stderr


def test_run_fetches_validates_executes_and_records(workspace: Path) -> None:
    completed = _run_cli(workspace, "run", "venue-report", "-p", "venue=Main Bar", "--json")

    assert completed.returncode == 0, completed.stderr
    payload = _json_output(completed)
    assert payload["success"] is True
    assert payload["blocked"] is False
    assert "report for Main Bar" in payload["result"]["output"]
    assert [item["level"] for item in payload["notifications"]] == ["success"]
    assert all(check["passed"] for check in payload["checks"])

    history = _json_output(_run_cli(workspace, "history", "--json"))
    assert [run["tool_id"] for run in history["runs"]] == ["venue-report"]
    assert history["runs"][0]["outcome"] == "completed"

    usage = _json_output(_run_cli(workspace, "history", "--stats", "--json"))
    assert usage["usage"] == [{"tool_id": "venue-report", "runs": 1}]

    stats = _json_output(_run_cli(workspace, "cache", "stats", "--json"))
    assert stats["stale"] == []
    assert stats["entries"] >= 2

    verify = _run_cli(workspace, "cache", "verify", "--json")
    assert verify.returncode == 0
    assert _json_output(verify)["failed"] == []


def test_run_text_mode_streams_output(workspace: Path) -> None:
    completed = _run_cli(workspace, "run", "venue-report", "-p", "venue=Patio")

    assert completed.returncode == 0, completed.stderr
    assert "report for Patio" in completed.stdout
    assert "Outcome: completed" in completed.stdout


def test_failing_tool_exits_nonzero(workspace: Path) -> None:
    completed = _run_cli(workspace, "run", "broken-tool", "--json")

    assert completed.returncode == 1
    payload = _json_output(completed)
    assert payload["success"] is False
    assert payload["result"]["exit_code"] == 3


def test_run_rejects_missing_required_parameter(workspace: Path) -> None:
    completed = _run_cli(workspace, "run", "venue-report")

    assert completed.returncode == 2
    assert "missing required parameter" in completed.stderr


def test_unknown_tool_is_a_config_error(workspace: Path) -> None:
    completed = _run_cli(workspace, "preflight", "no-such-tool")

    assert completed.returncode == 2
    assert "unknown tool id" in completed.stderr


def test_preflight_reports_missing_script_then_passes_after_fetch(workspace: Path) -> None:
    before = _run_cli(workspace, "preflight", "venue-report", "--json")
    after = _run_cli(workspace, "preflight", "venue-report", "--fetch", "--json")

    assert before.returncode == 1
    assert _json_output(before)["passed"] is False
    assert after.returncode == 0, after.stderr
    assert _json_output(after)["passed"] is True


def test_exec_runs_local_script(workspace: Path) -> None:
    script = workspace / "scratch" / "hello.py"
    _write(
        script,
        'import sys\nprint("hello", flush=True)\nprint("::warning::check venue", flush=True)\n',
    )

    completed = _run_cli(workspace, "exec", str(script), "--json")

    assert completed.returncode == 0, completed.stderr
    payload = _json_output(completed)
    assert payload["result"]["outcome"] == "completed"
    assert "hello" in payload["result"]["output"]


def test_cache_clear_and_sweep_report_counts(workspace: Path) -> None:
    assert _run_cli(workspace, "cache", "fetch", "tools/venue_report.py").returncode == 0

    cleared = _json_output(_run_cli(workspace, "cache", "clear", "--json"))
    swept = _json_output(_run_cli(workspace, "cache", "sweep", "--json"))

    assert cleared["removed"] >= 1
    assert swept["removed"] == 0
    assert _json_output(_run_cli(workspace, "cache", "stats", "--json"))["entries"] == 0


def test_config_command_shows_effective_values(workspace: Path) -> None:
    completed = _run_cli(
        workspace, "config", "--json", "--profile", "strict", "--set", "history.retention_days=7"
    )

    assert completed.returncode == 0, completed.stderr
    payload = _json_output(completed)
    config = payload["config"]
    assert payload["active_profile"] == "strict"
    assert config["execution"]["runtime"] == "python"
    assert config["cache"]["expiration_minutes"] == 15
    assert config["history"]["retention_days"] == 7

    text = _run_cli(workspace, "config", "--set", "history.retention_days=7")
    assert text.returncode == 0, text.stderr
    assert '"retention_days": 7' in text.stdout


def test_invalid_config_and_arguments_exit_with_config_code(workspace: Path) -> None:
    bad_override = _run_cli(workspace, "config", "--set", "execution.runtime=ruby")
    bad_param = _run_cli(workspace, "exec", "x.py", "-p", "novalue")
    bad_limit = _run_cli(workspace, "history", "--limit", "0")
    bad_command = _run_cli(workspace, "frobnicate")

    assert bad_override.returncode == 2
    assert "execution.runtime" in bad_override.stderr
    assert bad_param.returncode == 2
    assert bad_limit.returncode == 2
    assert bad_command.returncode == 2
