"""Manifest access with a short in-memory TTL and an offline fallback to the cached copy."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Final

import structlog

from bepoz_toolkit.catalog.fetcher import FetchError
from bepoz_toolkit.catalog.manifest import Manifest, ManifestError, ToolDefinition, parse_manifest
from bepoz_toolkit.constants import MANIFEST_PATH

if TYPE_CHECKING:
    from bepoz_toolkit.cache.artifact_cache import ArtifactCache
    from bepoz_toolkit.catalog.fetcher import ArtifactFetcher

try:
    from datetime import UTC
except ImportError:
    UTC = timezone.utc  # noqa: UP017

DEFAULT_MANIFEST_REFRESH: Final[timedelta] = timedelta(minutes=5)


class CatalogSource:
    """Loads the catalog manifest, preferring the network and falling back to the cache."""

    def __init__(
        self,
        fetcher: ArtifactFetcher,
        cache: ArtifactCache,
        *,
        manifest_path: str = MANIFEST_PATH,
        refresh_interval: timedelta = DEFAULT_MANIFEST_REFRESH,
        now_provider: Callable[[], datetime] | None = None,
        logger: Any | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._cache = cache
        self._manifest_path = manifest_path
        self._refresh_interval = refresh_interval
        self._now_provider = now_provider or (lambda: datetime.now(UTC))
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._manifest: Manifest | None = None
        self._loaded_at: datetime | None = None
        self._offline = False

    @property
    def offline(self) -> bool:
        """True when the last load was served from the cached manifest."""
        return self._offline

    def manifest(self, *, force_refresh: bool = False) -> Manifest:
        now = self._now_provider()
        if (
            not force_refresh
            and self._manifest is not None
            and self._loaded_at is not None
            and now - self._loaded_at < self._refresh_interval
        ):
            return self._manifest

        try:
            content = self._fetcher.fetch(self._manifest_path)
            manifest = parse_manifest(content)
        except (FetchError, ManifestError) as exc:
            self._logger.warning("catalog_manifest_fetch_failed", error=str(exc))
            manifest = self._load_cached(exc)
            self._offline = True
        else:
            self._cache.store(self._manifest_path, content)
            self._offline = False
            self._logger.info(
                "catalog_manifest_loaded",
                version=manifest.version,
                tool_count=len(manifest.tools),
                module_count=len(manifest.modules),
            )

        self._manifest = manifest
        self._loaded_at = now
        return manifest

    def tool(self, tool_id: str) -> ToolDefinition:
        tool = self.manifest().tool(tool_id)
        if tool is None:
            raise ManifestError(f"unknown tool id {tool_id!r}")
        return tool

    def _load_cached(self, cause: Exception) -> Manifest:
        path = self._cache.resolve(self._manifest_path)
        if path is None:
            raise cause
        manifest = parse_manifest(path.read_bytes())
        self._logger.info("catalog_manifest_loaded_offline", version=manifest.version)
        return manifest


__all__ = [
    "CatalogSource",
    "DEFAULT_MANIFEST_REFRESH",
]
