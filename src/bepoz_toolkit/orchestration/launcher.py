"""
bepoz-toolkit — tool launcher

File: src/bepoz_toolkit/orchestration/launcher.py

Purpose
- Thin pipeline over the core components: make artifacts available through the
  cache, validate, execute, then hand the result to the ledger and the
  notification channel.

Functional requirements
- Artifacts are re-fetched when absent, stale, or failing integrity; an intact
  cached copy is used when the catalog is unreachable. Corrupted bytes are never
  served: a launch whose artifacts fail integrity is refused before pre-flight.
- Blocking on pre-flight failures is policy: any failure by default, or only
  failures of the configured checks.
- A configured deadline stops the run through the host's cooperative stop.
- Every executed run is recorded in the history ledger with redacted parameters.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from bepoz_toolkit.cache.artifact_cache import normalize_key
from bepoz_toolkit.catalog.fetcher import FetchError
from bepoz_toolkit.catalog.manifest import coerce_parameters
from bepoz_toolkit.execution.models import ExecutionOutcome, ExecutionRequest, ExecutionResult
from bepoz_toolkit.observability.logging import correlation_scope
from bepoz_toolkit.persistence.repositories import ExecutionRecord
from bepoz_toolkit.persistence.state_db import StateDBError
from bepoz_toolkit.preflight.models import PreFlightCheckResult, blocking_failures
from bepoz_toolkit.utils.concurrency import run_with_deadline

if TYPE_CHECKING:
    from bepoz_toolkit.cache.artifact_cache import ArtifactCache
    from bepoz_toolkit.catalog.fetcher import ArtifactFetcher
    from bepoz_toolkit.catalog.manifest import ToolDefinition
    from bepoz_toolkit.execution.host import ExecutionHost
    from bepoz_toolkit.execution.models import LineSink, ProgressSink
    from bepoz_toolkit.observability.notifications import NotificationChannel
    from bepoz_toolkit.persistence.repositories import ExecutionHistoryRepo
    from bepoz_toolkit.preflight.models import ConnectionTarget
    from bepoz_toolkit.preflight.validator import PreFlightValidator


class ArtifactUnavailableError(RuntimeError):
    """Raised when an artifact can be neither fetched nor served from an intact cache copy."""

    def __init__(self, key: str, detail: str) -> None:
        super().__init__(f"artifact {key} is unavailable: {detail}")
        self.key = key


@dataclass(frozen=True, slots=True)
class LaunchOutcome:
    tool_id: str
    checks: tuple[PreFlightCheckResult, ...] = field(default_factory=tuple)
    result: ExecutionResult | None = None
    blocked: bool = False
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.result is not None and self.result.success

    def to_dict(self) -> dict[str, object]:
        return {
            "tool_id": self.tool_id,
            "success": self.success,
            "blocked": self.blocked,
            "error": self.error,
            "checks": [check.to_dict() for check in self.checks],
            "result": None if self.result is None else self.result.to_dict(),
        }


class ToolLauncher:
    """Resolves, validates and runs catalog tools."""

    def __init__(
        self,
        cache: ArtifactCache,
        fetcher: ArtifactFetcher,
        validator: PreFlightValidator,
        host: ExecutionHost,
        *,
        history: ExecutionHistoryRepo | None = None,
        notifications: NotificationChannel | None = None,
        blocking_checks: Sequence[str] | None = None,
        block_on_failure: bool = True,
        deadline_seconds: float | None = None,
        logger: Any | None = None,
    ) -> None:
        if deadline_seconds is not None and deadline_seconds <= 0:
            raise ValueError("deadline_seconds must be > 0 when set")
        self._cache = cache
        self._fetcher = fetcher
        self._validator = validator
        self._host = host
        self._history = history
        self._notifications = notifications
        self._blocking_checks = None if blocking_checks is None else tuple(blocking_checks)
        self._block_on_failure = block_on_failure
        self._deadline_seconds = deadline_seconds
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def host(self) -> ExecutionHost:
        return self._host

    def ensure_artifact(self, key: str) -> Path:
        """Local path of a usable copy of ``key``, fetching when needed."""

        key = normalize_key(key)
        cached = self._cache.resolve(key)
        intact = cached is not None and self._cache.verify_integrity(key)
        if intact and not self._cache.is_stale(key):
            return cached

        reason = "absent" if cached is None else ("stale" if intact else "integrity-failed")
        try:
            content = self._fetcher.fetch(key)
        except FetchError as exc:
            if intact:
                self._logger.warning(
                    "artifact_refresh_failed_using_cached", cache_key=key, error=str(exc)
                )
                return cached
            raise ArtifactUnavailableError(key, str(exc)) from exc

        entry = self._cache.store(key, content)
        self._logger.info("artifact_refreshed", cache_key=key, reason=reason)
        return entry.local_path

    def prepare(self, tool: ToolDefinition) -> list[str]:
        """Make the tool's script and dependencies available; return unavailable keys."""

        unavailable: list[str] = []
        for key in (tool.file, *tool.dependencies):
            if not key:
                continue
            try:
                self.ensure_artifact(key)
            except ArtifactUnavailableError as exc:
                self._logger.warning("artifact_unavailable", cache_key=key, error=str(exc))
                unavailable.append(key)
        return unavailable

    async def launch(
        self,
        tool: ToolDefinition,
        *,
        parameters: Mapping[str, object] | None = None,
        connection: str | ConnectionTarget | None = None,
        on_output: LineSink | None = None,
        on_error: LineSink | None = None,
        on_progress: ProgressSink | None = None,
    ) -> LaunchOutcome:
        """Run ``tool`` end to end; raises ``ExecutionHostBusyError`` if a run is active."""

        with correlation_scope(run_id=uuid.uuid4().hex, tool_id=tool.id):
            coerced = coerce_parameters(tool, parameters)
            # A local copy that could not be made usable failed integrity; never run it.
            corrupted = [key for key in self.prepare(tool) if self._cache.resolve(key) is not None]
            if corrupted:
                names = ", ".join(corrupted)
                self._logger.error("launch_refused_corrupted_artifacts", cache_keys=names)
                self._notify_warning(f"{tool.name} was not started", f"Corrupted artifacts: {names}")
                return LaunchOutcome(
                    tool_id=tool.id,
                    blocked=True,
                    error=f"Artifacts unavailable: {names}",
                )

            checks = tuple(self._validator.validate(tool.requirements(), connection))
            blocking = (
                blocking_failures(checks, self._blocking_checks) if self._block_on_failure else []
            )
            if blocking:
                names = ", ".join(check.check_name for check in blocking)
                self._logger.warning("launch_blocked", failed_checks=names)
                self._notify_warning(f"{tool.name} was not started", f"Pre-flight failed: {names}")
                return LaunchOutcome(
                    tool_id=tool.id,
                    checks=checks,
                    blocked=True,
                    error=f"Pre-flight checks failed: {names}",
                )

            script_path = self._cache.resolve(tool.file) if tool.file else None
            request = ExecutionRequest(
                script_path=script_path or self._script_placeholder(tool),
                parameters=coerced,
                on_output=on_output,
                on_error=on_error,
                on_progress=on_progress,
            )
            self._logger.info("launch_started", script_path=str(request.script_path))
            if self._deadline_seconds is None:
                result = await self._host.execute(request)
            else:
                result = await run_with_deadline(
                    self._host.execute(request),
                    self._deadline_seconds,
                    on_deadline=self._on_deadline,
                )

            self._record(tool, coerced, result)
            self._notify_result(tool, result)
            return LaunchOutcome(tool_id=tool.id, checks=checks, result=result)

    def stop(self) -> bool:
        return self._host.stop()

    def _script_placeholder(self, tool: ToolDefinition) -> Path:
        # No cached script: hand the host the expected path so it reports a missing script.
        if tool.file:
            return self._cache.path_for(tool.file)
        return self._cache.root / f"{tool.id}.missing"

    def _on_deadline(self) -> None:
        self._logger.warning("launch_deadline_exceeded", deadline_seconds=self._deadline_seconds)
        self._host.stop()

    def _record(
        self, tool: ToolDefinition, parameters: Mapping[str, object], result: ExecutionResult
    ) -> None:
        if self._history is None:
            return
        record = ExecutionRecord(
            tool_id=tool.id,
            tool_name=tool.name,
            success=result.success,
            outcome=result.outcome.value,
            exit_code=result.exit_code,
            duration_ms=result.duration_ms,
            output=result.output,
            error_output=result.error_output,
            executed_at=result.completed_at,
            parameters=dict(parameters),
        )
        try:
            self._history.record(record)
        except StateDBError as exc:
            self._logger.error("execution_history_write_failed", error=str(exc))

    def _notify_result(self, tool: ToolDefinition, result: ExecutionResult) -> None:
        if self._notifications is None:
            return
        seconds = result.duration_ms / 1000
        if result.success:
            self._notifications.success(f"{tool.name} completed", f"Finished in {seconds:.1f}s")
        elif result.outcome is ExecutionOutcome.CANCELLED:
            self._notifications.warning(f"{tool.name} cancelled", result.error_output)
        else:
            first_error = next(iter(result.error_output.splitlines()), "")
            self._notifications.error(f"{tool.name} failed", first_error)

    def _notify_warning(self, title: str, body: str) -> None:
        if self._notifications is not None:
            self._notifications.warning(title, body)


__all__ = [
    "ArtifactUnavailableError",
    "LaunchOutcome",
    "ToolLauncher",
]
