"""
Local artifact cache: downloaded script/module bytes on disk plus one metadata
row per logical key (SHA-256, size, cached-at, expires-at) in the state DB.

Freshness (``is_stale``) and integrity (``verify_integrity``) are separate
predicates: a file can be fresh yet corrupted on disk, or expired yet
byte-identical to what a re-fetch would return.

Probes never raise: metadata or filesystem faults read as "stale", "absent" or
"not intact" so callers always fall toward a re-fetch. ``store`` is the
exception and propagates disk and database failures.
"""

from __future__ import annotations

import os
import re
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Final

import structlog

from bepoz_toolkit.constants import DEFAULT_CACHE_TTL_MINUTES
from bepoz_toolkit.persistence.repositories import CacheEntry, CacheMetadataRepo
from bepoz_toolkit.persistence.state_db import StateDBError
from bepoz_toolkit.utils.fs import atomic_write, is_within, prune_empty_directories
from bepoz_toolkit.utils.hashing import sha256_file

try:
    from datetime import UTC
except ImportError:
    UTC = timezone.utc  # noqa: UP017

DEFAULT_TTL: Final[timedelta] = timedelta(minutes=DEFAULT_CACHE_TTL_MINUTES)

_DRIVE_PREFIX: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z]:")


class CacheKeyError(ValueError):
    """Raised when a cache key is empty, absolute, or escapes the cache root."""


def normalize_key(key: str) -> str:
    """Canonical form of a repository-relative artifact path (``/`` separated)."""

    if not isinstance(key, str):
        raise CacheKeyError(f"cache key must be a string, got {type(key).__name__}")
    text = key.strip().replace("\\", "/")
    if not text:
        raise CacheKeyError("cache key must not be empty")
    if text.startswith("/") or _DRIVE_PREFIX.match(text):
        raise CacheKeyError(f"cache key must be relative: {key!r}")
    parts = [part for part in PurePosixPath(text).parts if part not in {"", "."}]
    if not parts:
        raise CacheKeyError(f"cache key must name a file: {key!r}")
    if ".." in parts:
        raise CacheKeyError(f"cache key must not escape the cache root: {key!r}")
    return "/".join(parts)


class ArtifactCache:
    """Durable, verifiable local storage for catalog artifacts."""

    def __init__(
        self,
        root: str | os.PathLike[str],
        metadata: CacheMetadataRepo,
        *,
        ttl: timedelta = DEFAULT_TTL,
        now_provider: Callable[[], datetime] | None = None,
        logger: Any | None = None,
    ) -> None:
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        self._root = Path(root)
        self._metadata = metadata
        self._ttl = ttl
        self._now_provider = now_provider or (lambda: datetime.now(UTC))
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def path_for(self, key: str) -> Path:
        """Deterministic local path for ``key``; the file need not exist."""
        return self._root.joinpath(*normalize_key(key).split("/"))

    def store(self, key: str, content: bytes) -> CacheEntry:
        """Write ``content`` under ``key`` and upsert its metadata row."""

        normalized = normalize_key(key)
        path = self.path_for(normalized)
        path.parent.mkdir(parents=True, exist_ok=True)
        if not is_within(path, self._root):
            raise CacheKeyError(f"cache key resolves outside the cache root: {normalized!r}")
        atomic_write(path, content)

        now = self._now()
        entry = CacheEntry(
            key=normalized,
            local_path=path,
            sha256=sha256_file(path),
            size_bytes=path.stat().st_size,
            cached_at=now,
            expires_at=now + self._ttl,
        )
        try:
            self._metadata.upsert(entry)
        except Exception:
            # Keep "row exists iff file exists": a file without a row would be unverifiable.
            path.unlink(missing_ok=True)
            raise

        self._logger.info(
            "cache_artifact_stored",
            cache_key=normalized,
            size_bytes=entry.size_bytes,
            sha256=entry.sha256,
            expires_at=entry.expires_at.isoformat(),
        )
        return entry

    def resolve(self, key: str) -> Path | None:
        """Local path when the file exists; metadata and staleness are not consulted."""

        try:
            path = self.path_for(key)
        except CacheKeyError:
            return None
        return path if path.is_file() else None

    def is_stale(self, key: str) -> bool:
        path = self.resolve(key)
        if path is None:
            return True
        entry = self._read_entry(key)
        if entry is None:
            return True
        return entry.is_expired(self._now())

    def verify_integrity(self, key: str) -> bool:
        path = self.resolve(key)
        if path is None:
            return False
        entry = self._read_entry(key)
        if entry is None:
            return False
        try:
            actual = sha256_file(path)
        except OSError as exc:
            self._logger.warning("cache_integrity_read_failed", cache_key=key, error=str(exc))
            return False
        if actual != entry.sha256:
            self._logger.warning(
                "cache_integrity_mismatch",
                cache_key=entry.key,
                expected=entry.sha256,
                actual=actual,
            )
            return False
        return True

    def entry(self, key: str) -> CacheEntry | None:
        return self._read_entry(key)

    def entries(self) -> list[CacheEntry]:
        return self._metadata.list_all()

    def clear_all(self) -> int:
        """Delete every cached file (best-effort) and all metadata; return files removed."""

        removed = 0
        failed = 0
        for path in self._iter_files():
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                failed += 1
                self._logger.warning("cache_file_delete_failed", path=str(path), error=str(exc))
                continue
            removed += 1

        prune_empty_directories(self._root)
        self._metadata.delete_all()
        self._logger.info("cache_cleared", files_removed=removed, files_failed=failed)
        return removed

    def sweep_expired(self) -> int:
        """Remove artifacts whose ``expires_at`` is in the past; return how many went."""

        now = self._now()
        try:
            expired = self._metadata.list_expired(now)
        except (StateDBError, ValueError) as exc:
            self._logger.warning("cache_sweep_metadata_failed", error=str(exc))
            return 0

        removed_keys: list[str] = []
        for item in expired:
            try:
                item.local_path.unlink(missing_ok=True)
            except OSError as exc:
                self._logger.warning(
                    "cache_file_delete_failed", path=str(item.local_path), error=str(exc)
                )
                continue
            removed_keys.append(item.key)

        try:
            self._metadata.delete(removed_keys)
        except StateDBError as exc:
            # Files are gone; orphaned rows read as missing artifacts until the next sweep.
            self._logger.warning(
                "cache_sweep_metadata_delete_failed", keys=len(removed_keys), error=str(exc)
            )
        self._logger.info(
            "cache_sweep_completed",
            removed=len(removed_keys),
            expired=len(expired),
        )
        return len(removed_keys)

    def total_bytes(self) -> int:
        total = 0
        for path in self._iter_files():
            try:
                total += path.stat().st_size
            except FileNotFoundError:
                continue
        return total

    def file_count(self) -> int:
        return sum(1 for _ in self._iter_files())

    def _read_entry(self, key: str) -> CacheEntry | None:
        try:
            return self._metadata.get(normalize_key(key))
        except (StateDBError, ValueError) as exc:
            self._logger.warning("cache_metadata_read_failed", cache_key=key, error=str(exc))
            return None

    def _iter_files(self) -> list[Path]:
        if not self._root.is_dir():
            return []
        files: list[Path] = []
        for current, _dirs, names in os.walk(self._root):
            for name in names:
                candidate = Path(current) / name
                if candidate.is_file():
                    files.append(candidate)
        return files

    def _now(self) -> datetime:
        now = self._now_provider()
        if now.tzinfo is None:
            raise ValueError("now_provider must return timezone-aware datetimes")
        return now.astimezone(UTC)


__all__ = [
    "ArtifactCache",
    "CacheKeyError",
    "DEFAULT_TTL",
    "normalize_key",
]
