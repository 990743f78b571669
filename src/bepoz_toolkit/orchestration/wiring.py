"""Build the component graph for one toolkit process from loaded settings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from bepoz_toolkit.cache.artifact_cache import ArtifactCache
from bepoz_toolkit.catalog.fetcher import ArtifactFetcher, HttpArtifactFetcher
from bepoz_toolkit.catalog.source import CatalogSource
from bepoz_toolkit.config.settings import ToolkitSettings
from bepoz_toolkit.execution.host import ExecutionHost
from bepoz_toolkit.execution.interpreters import InterpreterProfile
from bepoz_toolkit.observability.notifications import NotificationChannel
from bepoz_toolkit.orchestration.launcher import ToolLauncher
from bepoz_toolkit.persistence.repositories import CacheMetadataRepo, ExecutionHistoryRepo
from bepoz_toolkit.persistence.state_db import StateDB
from bepoz_toolkit.preflight.probes import RuntimeProbe
from bepoz_toolkit.preflight.validator import PreFlightValidator

try:
    from datetime import UTC
except ImportError:
    UTC = timezone.utc  # noqa: UP017


@dataclass(slots=True)
class Toolkit:
    settings: ToolkitSettings
    state_db: StateDB
    cache: ArtifactCache
    history: ExecutionHistoryRepo
    fetcher: ArtifactFetcher
    catalog: CatalogSource
    validator: PreFlightValidator
    host: ExecutionHost
    notifications: NotificationChannel
    launcher: ToolLauncher

    def prune_history(self) -> int:
        """Apply the configured retention window; 0 when retention is disabled."""
        if self.settings.history_retention is None:
            return 0
        return self.history.prune_older_than(datetime.now(UTC) - self.settings.history_retention)

    def close(self) -> None:
        close = getattr(self.fetcher, "close", None)
        if callable(close):
            close()


def build_toolkit(
    settings: ToolkitSettings,
    *,
    fetcher: ArtifactFetcher | None = None,
    profile: InterpreterProfile | None = None,
) -> Toolkit:
    state_db = StateDB(settings.state_db)
    cache = ArtifactCache(settings.cache_dir, CacheMetadataRepo(state_db), ttl=settings.cache_ttl)
    history = ExecutionHistoryRepo(state_db)
    resolved_fetcher: ArtifactFetcher = (
        fetcher
        if fetcher is not None
        else HttpArtifactFetcher(
            settings.catalog_base_url,
            timeout_seconds=settings.catalog_timeout.total_seconds(),
            token=settings.catalog_token,
        )
    )
    interpreter = profile if profile is not None else InterpreterProfile.for_runtime(settings.runtime)
    validator = PreFlightValidator(
        cache,
        runtime_probe=RuntimeProbe(
            interpreter, timeout_seconds=settings.runtime_probe_timeout.total_seconds()
        ),
        connect_timeout_seconds=settings.connect_timeout.total_seconds(),
        default_port=settings.default_database_port,
    )
    host = ExecutionHost(
        interpreter,
        execution_policy=settings.execution_policy,
        stop_grace_seconds=settings.stop_grace.total_seconds(),
    )
    notifications = NotificationChannel(settings.notification_capacity)
    launcher = ToolLauncher(
        cache,
        resolved_fetcher,
        validator,
        host,
        history=history,
        notifications=notifications,
        blocking_checks=settings.blocking_checks,
        block_on_failure=settings.block_on_preflight_failure,
        deadline_seconds=None if settings.deadline is None else settings.deadline.total_seconds(),
    )
    return Toolkit(
        settings=settings,
        state_db=state_db,
        cache=cache,
        history=history,
        fetcher=resolved_fetcher,
        catalog=CatalogSource(resolved_fetcher, cache, manifest_path=settings.manifest_path),
        validator=validator,
        host=host,
        notifications=notifications,
        launcher=launcher,
    )


__all__ = ["Toolkit", "build_toolkit"]
