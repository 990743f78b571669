"""Command-line interface router for bepoz-toolkit."""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
import uuid
from collections.abc import Awaitable, Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from bepoz_toolkit.cache.artifact_cache import CacheKeyError
from bepoz_toolkit.catalog.fetcher import FetchError
from bepoz_toolkit.catalog.manifest import (
    Manifest,
    ManifestError,
    ParameterError,
    ToolDefinition,
)
from bepoz_toolkit.config import (
    ConfigLoadError,
    ConfigValidationError,
    SettingsError,
    ToolkitSettings,
    dump_effective_config,
    redact_config,
)
from bepoz_toolkit.execution.models import ExecutionOutcome, ExecutionRequest, ExecutionResult
from bepoz_toolkit.observability.logging import setup_logging, shutdown_logging
from bepoz_toolkit.orchestration.launcher import ArtifactUnavailableError
from bepoz_toolkit.orchestration.wiring import Toolkit, build_toolkit
from bepoz_toolkit.persistence.repositories import ExecutionRecord
from bepoz_toolkit.ui.render import CLIRenderer, create_renderer, format_bytes

T = TypeVar("T")

EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_NETWORK = 3

# Outcomes whose message never reached the error sink.
_UNSTREAMED_OUTCOMES = frozenset(
    {
        ExecutionOutcome.CANCELLED,
        ExecutionOutcome.MISSING_SCRIPT,
        ExecutionOutcome.ENVIRONMENT_FAULT,
    }
)


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = EXIT_FAILURE

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="bepoz-toolkit",
        description=(
            "bepoz-toolkit — fetch, validate and run back-office maintenance tools.\n\n"
            "Common workflows:\n"
            "  bepoz-toolkit tools                     List catalog tools\n"
            "  bepoz-toolkit preflight <tool-id>       Check a tool is ready to run\n"
            "  bepoz-toolkit run <tool-id> -p k=v      Fetch, validate and run a tool\n"
            "  bepoz-toolkit cache stats               Show local cache usage\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to toolkit TOML config (default: ./toolkit.toml if present).",
    )
    common.add_argument("--profile", default=None, help="Optional config profile overlay name.")
    common.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="SECTION.FIELD=VALUE",
        help="Override one config value (repeatable; highest precedence).",
    )
    common.add_argument("--json", action="store_true", help="Emit JSON output")
    common.add_argument("--verbose", "-v", action="store_true", default=False)
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # cache ---------------------------------------------------------------
    cache_parser = subparsers.add_parser("cache", help="Inspect and maintain the artifact cache")
    cache_sub = cache_parser.add_subparsers(dest="cache_command", required=True)

    stats_parser = cache_sub.add_parser("stats", parents=[common], help="Show cache usage")
    stats_parser.set_defaults(handler=_cmd_cache_stats)

    clear_parser = cache_sub.add_parser("clear", parents=[common], help="Delete every cached artifact")
    clear_parser.set_defaults(handler=_cmd_cache_clear)

    sweep_parser = cache_sub.add_parser(
        "sweep", parents=[common], help="Delete artifacts past their expiry"
    )
    sweep_parser.set_defaults(handler=_cmd_cache_sweep)

    verify_parser = cache_sub.add_parser(
        "verify", parents=[common], help="Check cached artifacts against their SHA-256"
    )
    verify_parser.add_argument("keys", nargs="*", help="Cache keys (default: every entry)")
    verify_parser.set_defaults(handler=_cmd_cache_verify)

    fetch_parser = cache_sub.add_parser(
        "fetch", parents=[common], help="Download artifacts into the cache"
    )
    fetch_parser.add_argument("keys", nargs="+", help="Repository-relative artifact paths")
    fetch_parser.add_argument(
        "--force", action="store_true", help="Re-download even when the cached copy is fresh"
    )
    fetch_parser.set_defaults(handler=_cmd_cache_fetch)

    # tools ---------------------------------------------------------------
    tools_parser = subparsers.add_parser("tools", parents=[common], help="List catalog tools")
    tools_parser.add_argument("--category", default=None, help="Only tools in this category")
    tools_parser.add_argument(
        "--refresh", action="store_true", help="Bypass the in-memory manifest cache"
    )
    tools_parser.set_defaults(handler=_cmd_tools)

    # preflight -----------------------------------------------------------
    preflight_parser = subparsers.add_parser(
        "preflight",
        parents=[common],
        help="Run pre-flight checks for a tool",
        description=(
            "Run the readiness checks for a catalog tool without executing it.\n\n"
            "Examples:\n"
            "  bepoz-toolkit preflight venue-audit\n"
            "  bepoz-toolkit preflight venue-audit --server 'SQL01\\BEPOZ,1433' --fetch\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    preflight_parser.add_argument("tool_id")
    preflight_parser.add_argument("--server", default=None, help="Database server descriptor")
    preflight_parser.add_argument(
        "--fetch", action="store_true", help="Fetch missing or stale artifacts first"
    )
    preflight_parser.set_defaults(handler=_cmd_preflight)

    # exec ----------------------------------------------------------------
    exec_parser = subparsers.add_parser(
        "exec", parents=[common], help="Run a local script file in the execution host"
    )
    exec_parser.add_argument("script", help="Path to the script file")
    _add_param_argument(exec_parser)
    exec_parser.set_defaults(handler=_cmd_exec)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Fetch, validate and run a catalog tool",
        description=(
            "Resolve the tool through the cache, run pre-flight checks, execute it and\n"
            "record the outcome. Ctrl-C stops the running script.\n\n"
            "Examples:\n"
            "  bepoz-toolkit run venue-audit -p VenueId=3\n"
            "  bepoz-toolkit run venue-audit --server SQL01,1433 --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument("tool_id")
    run_parser.add_argument("--server", default=None, help="Database server descriptor")
    _add_param_argument(run_parser)
    run_parser.set_defaults(handler=_cmd_run)

    # history -------------------------------------------------------------
    history_parser = subparsers.add_parser(
        "history", parents=[common], help="Show recent tool runs"
    )
    history_parser.add_argument("--tool", dest="tool_id", default=None)
    history_parser.add_argument("--limit", type=int, default=20)
    history_parser.add_argument(
        "--prune", action="store_true", help="Apply the configured retention window first"
    )
    history_parser.add_argument(
        "--stats", action="store_true", help="Show run counts per tool instead of recent runs"
    )
    history_parser.set_defaults(handler=_cmd_history)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config", parents=[common], help="Show effective configuration (redacted)"
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def _add_param_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--param",
        "-p",
        dest="params",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Named script parameter (repeatable)",
    )


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return EXIT_CONFIG

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_cache_stats(args: argparse.Namespace) -> int:
    with _toolkit(args) as toolkit:
        cache = toolkit.cache
        entries = cache.entries()
        stale = [entry.key for entry in entries if cache.is_stale(entry.key)]
        total_bytes = cache.total_bytes()
        payload: dict[str, object] = {
            "command": "cache stats",
            "root": str(cache.root),
            "file_count": cache.file_count(),
            "total_bytes": total_bytes,
            "entries": len(entries),
            "stale": stale,
            "ttl_minutes": int(cache.ttl.total_seconds() // 60),
        }

    if args.json:
        _emit_json(payload)
        return 0
    renderer = _get_renderer(args)
    renderer.kv("Cache root", payload["root"])
    renderer.kv("Files", payload["file_count"])
    renderer.kv("Size", format_bytes(total_bytes))
    renderer.kv("Entries", len(entries))
    renderer.kv("Stale", len(stale))
    return 0


def _cmd_cache_clear(args: argparse.Namespace) -> int:
    with _toolkit(args) as toolkit:
        removed = toolkit.cache.clear_all()
    return _report_count(args, "cache clear", "Removed files", removed)


def _cmd_cache_sweep(args: argparse.Namespace) -> int:
    with _toolkit(args) as toolkit:
        removed = toolkit.cache.sweep_expired()
    return _report_count(args, "cache sweep", "Expired entries removed", removed)


def _cmd_cache_verify(args: argparse.Namespace) -> int:
    with _toolkit(args) as toolkit:
        cache = toolkit.cache
        keys = list(args.keys) or [entry.key for entry in cache.entries()]
        statuses: dict[str, str] = {}
        for key in keys:
            if cache.resolve(key) is None:
                statuses[key] = "missing"
            elif cache.verify_integrity(key):
                statuses[key] = "intact"
            else:
                statuses[key] = "corrupt"

    failed = sorted(key for key, status in statuses.items() if status != "intact")
    if args.json:
        _emit_json({"command": "cache verify", "results": statuses, "failed": failed})
    else:
        renderer = _get_renderer(args)
        renderer.table(("KEY", "STATUS"), [(key, statuses[key]) for key in sorted(statuses)])
    return EXIT_FAILURE if failed else 0


def _cmd_cache_fetch(args: argparse.Namespace) -> int:
    fetched: dict[str, str] = {}
    with _toolkit(args) as toolkit:
        for key in args.keys:
            try:
                if args.force:
                    path = toolkit.cache.store(key, toolkit.fetcher.fetch(key)).local_path
                else:
                    path = toolkit.launcher.ensure_artifact(key)
            except CacheKeyError as exc:
                raise CLIError(str(exc), exit_code=EXIT_CONFIG) from exc
            except (FetchError, ArtifactUnavailableError) as exc:
                raise CLIError(str(exc), exit_code=EXIT_NETWORK) from exc
            fetched[key] = str(path)

    if args.json:
        _emit_json({"command": "cache fetch", "fetched": fetched})
    else:
        renderer = _get_renderer(args)
        for key, path in fetched.items():
            renderer.kv(key, path)
    return 0


def _cmd_tools(args: argparse.Namespace) -> int:
    with _toolkit(args) as toolkit:
        manifest = _load_manifest(toolkit, force_refresh=args.refresh)
        tools = manifest.tools_in(args.category) if args.category else list(manifest.tools)
        rows = [
            {
                "id": tool.id,
                "name": tool.name,
                "category": tool.category,
                "version": tool.version,
                "cached": bool(tool.file) and toolkit.cache.resolve(tool.file) is not None,
            }
            for tool in tools
        ]
        offline = toolkit.catalog.offline

    if args.json:
        _emit_json(
            {"command": "tools", "version": manifest.version, "offline": offline, "tools": rows}
        )
        return 0
    renderer = _get_renderer(args)
    if offline:
        renderer.warning("catalog unreachable; showing the cached manifest")
    renderer.table(
        ("ID", "NAME", "CATEGORY", "VERSION", "CACHED"),
        [
            (row["id"], row["name"], row["category"], row["version"], "yes" if row["cached"] else "no")
            for row in rows
        ],
        title=f"Catalog {manifest.version}".rstrip(),
    )
    return 0


def _cmd_preflight(args: argparse.Namespace) -> int:
    with _toolkit(args) as toolkit:
        tool = _find_tool(toolkit, args.tool_id)
        if args.fetch:
            toolkit.launcher.prepare(tool)
        checks = toolkit.validator.validate(tool.requirements(), args.server)

    failed = [check for check in checks if not check.passed]
    if args.json:
        _emit_json(
            {
                "command": "preflight",
                "tool_id": tool.id,
                "passed": not failed,
                "checks": [check.to_dict() for check in checks],
            }
        )
    else:
        renderer = _get_renderer(args)
        renderer.heading(f"Pre-flight checks for {tool.name}")
        for check in checks:
            renderer.check(check)
    return EXIT_FAILURE if failed else 0


def _cmd_exec(args: argparse.Namespace) -> int:
    parameters = _parse_params(args.params)
    renderer = _get_renderer(args)
    quiet = bool(args.json)
    script = Path(args.script).expanduser().resolve()

    with _toolkit(args) as toolkit:
        request = ExecutionRequest(
            script_path=script,
            parameters=parameters,
            on_output=None if quiet else renderer.output_line,
            on_error=None if quiet else renderer.error_line,
            on_progress=None if quiet else renderer.progress,
        )
        result = _run_interruptible(toolkit.host.execute(request), toolkit.host.stop)
        toolkit.history.record(
            ExecutionRecord(
                tool_id=f"local:{script.name}",
                tool_name=script.name,
                success=result.success,
                outcome=result.outcome.value,
                exit_code=result.exit_code,
                duration_ms=result.duration_ms,
                output=result.output,
                error_output=result.error_output,
                executed_at=result.completed_at,
                parameters=parameters,
            )
        )

    if args.json:
        _emit_json({"command": "exec", "script": str(script), "result": result.to_dict()})
    else:
        _render_result(renderer, result)
    return 0 if result.success else EXIT_FAILURE


def _cmd_run(args: argparse.Namespace) -> int:
    parameters = _parse_params(args.params)
    renderer = _get_renderer(args)
    quiet = bool(args.json)

    with _toolkit(args) as toolkit:
        tool = _find_tool(toolkit, args.tool_id)
        try:
            outcome = _run_interruptible(
                toolkit.launcher.launch(
                    tool,
                    parameters=parameters,
                    connection=args.server,
                    on_output=None if quiet else renderer.output_line,
                    on_error=None if quiet else renderer.error_line,
                    on_progress=None if quiet else renderer.progress,
                ),
                toolkit.launcher.stop,
            )
        except ParameterError as exc:
            raise CLIError(str(exc), exit_code=EXIT_CONFIG) from exc
        notifications = toolkit.notifications.drain()

    if args.json:
        payload = outcome.to_dict()
        payload["command"] = "run"
        payload["notifications"] = [item.to_dict() for item in notifications]
        _emit_json(payload)
        return 0 if outcome.success else EXIT_FAILURE

    if outcome.blocked:
        renderer.heading(f"{tool.name} was not started")
        for check in outcome.checks:
            renderer.check(check)
        if outcome.error:
            renderer.text(outcome.error)
        return EXIT_FAILURE
    assert outcome.result is not None
    _render_result(renderer, outcome.result)
    for item in notifications:
        renderer.text(f"[{item.level.value}] {item.title}")
    return 0 if outcome.success else EXIT_FAILURE


def _cmd_history(args: argparse.Namespace) -> int:
    if not 1 <= args.limit <= 1000:
        raise CLIError("--limit must be between 1 and 1000", exit_code=EXIT_CONFIG)
    with _toolkit(args) as toolkit:
        pruned = toolkit.prune_history() if args.prune else 0
        records = toolkit.history.recent(limit=args.limit, tool_id=args.tool_id)
        usage = toolkit.history.usage_counts() if args.stats else None

    if usage is not None:
        return _report_usage(args, usage, pruned)
    if args.json:
        _emit_json(
            {
                "command": "history",
                "pruned": pruned,
                "runs": [record.to_dict() for record in records],
            }
        )
        return 0
    renderer = _get_renderer(args)
    if args.prune:
        renderer.kv("Pruned", pruned)
    renderer.table(
        ("EXECUTED AT", "TOOL", "OUTCOME", "EXIT", "DURATION"),
        [
            (
                record.executed_at.strftime("%Y-%m-%d %H:%M:%S"),
                record.tool_id,
                record.outcome,
                record.exit_code,
                f"{record.duration_ms} ms",
            )
            for record in records
        ],
    )
    return 0


def _report_usage(args: argparse.Namespace, usage: Mapping[str, int], pruned: int) -> int:
    ranked = sorted(usage.items(), key=lambda item: (-item[1], item[0]))
    if args.json:
        _emit_json(
            {
                "command": "history",
                "pruned": pruned,
                "usage": [{"tool_id": tool_id, "runs": runs} for tool_id, runs in ranked],
            }
        )
        return 0
    renderer = _get_renderer(args)
    if args.prune:
        renderer.kv("Pruned", pruned)
    renderer.table(("TOOL", "RUNS"), ranked)
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    if args.json:
        _emit_json(
            {
                "command": "config",
                "active_profile": args.profile,
                "config": redact_config(settings.raw),
            }
        )
        return 0
    renderer = _get_renderer(args)
    renderer.kv("Active profile", args.profile or "(default)")
    renderer.text(dump_effective_config(settings.raw))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=args.no_color, verbose=args.verbose)


def _report_count(args: argparse.Namespace, command: str, label: str, count: int) -> int:
    if args.json:
        _emit_json({"command": command, "removed": count})
    else:
        _get_renderer(args).kv(label, count)
    return 0


def _render_result(renderer: CLIRenderer, result: ExecutionResult) -> None:
    renderer.section("Result")
    renderer.kv("Outcome", result.outcome.value)
    renderer.kv("Exit code", result.exit_code)
    renderer.kv("Duration", f"{result.duration_ms} ms")
    if result.outcome in _UNSTREAMED_OUTCOMES:
        renderer.warning(result.error_output)


def _parse_params(raw: Sequence[str]) -> dict[str, str]:
    params: dict[str, str] = {}
    for item in raw:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise CLIError(f"parameter must be NAME=VALUE, got {item!r}", exit_code=EXIT_CONFIG)
        params[name.strip()] = value
    return params


def _parse_overrides(raw: Sequence[str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for item in raw:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise CLIError(
                f"override must be SECTION.FIELD=VALUE, got {item!r}", exit_code=EXIT_CONFIG
            )
        try:
            overrides[key.strip()] = json.loads(value)
        except json.JSONDecodeError:
            overrides[key.strip()] = value
    return overrides


def _load_settings(args: argparse.Namespace) -> ToolkitSettings:
    try:
        return ToolkitSettings.load(
            args.config_path,
            profile=args.profile,
            cli_overrides=_parse_overrides(args.overrides),
        )
    except (ConfigLoadError, ConfigValidationError, SettingsError) as exc:
        raise CLIError(str(exc), exit_code=EXIT_CONFIG) from exc


@contextmanager
def _toolkit(args: argparse.Namespace) -> Iterator[Toolkit]:
    """Settings, logging and the component graph for one command invocation."""

    settings = _load_settings(args)
    handle = setup_logging(
        {"log_level": settings.log_level, "redact_secrets": settings.redact_secrets},
        session_id=uuid.uuid4().hex,
        log_dir=settings.log_dir,
    )
    toolkit = build_toolkit(settings)
    try:
        yield toolkit
    finally:
        toolkit.close()
        shutdown_logging(handle)


def _load_manifest(toolkit: Toolkit, *, force_refresh: bool = False) -> Manifest:
    try:
        return toolkit.catalog.manifest(force_refresh=force_refresh)
    except FetchError as exc:
        raise CLIError(f"catalog unavailable and no cached manifest: {exc}", exit_code=EXIT_NETWORK) from exc
    except ManifestError as exc:
        raise CLIError(str(exc), exit_code=EXIT_CONFIG) from exc


def _find_tool(toolkit: Toolkit, tool_id: str) -> ToolDefinition:
    tool = _load_manifest(toolkit).tool(tool_id)
    if tool is None:
        raise CLIError(f"unknown tool id: {tool_id}", exit_code=EXIT_CONFIG)
    return tool


def _run_interruptible(awaitable: Awaitable[T], stop: Callable[[], object]) -> T:
    """Run ``awaitable`` to completion; SIGINT asks the host to stop instead of aborting."""

    async def _main() -> T:
        loop = asyncio.get_running_loop()
        installed = False
        try:
            loop.add_signal_handler(signal.SIGINT, stop)
            installed = True
        except (NotImplementedError, RuntimeError, ValueError):
            installed = False
        try:
            return await awaitable
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)

    return asyncio.run(_main())


__all__ = ["CLIError", "build_parser", "run_cli"]
