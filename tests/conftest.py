"""Shared fixtures: a migrated state DB, a controllable clock and a cache on top of both."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import pytest

from bepoz_toolkit.cache.artifact_cache import ArtifactCache
from bepoz_toolkit.persistence.repositories import CacheMetadataRepo, ExecutionHistoryRepo
from bepoz_toolkit.persistence.state_db import StateDB

if TYPE_CHECKING:
    from pathlib import Path


class FrozenClock:
    """Callable ``now_provider`` that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)

    def advance(self, delta: timedelta) -> datetime:
        self.now = self.now + delta
        return self.now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def state_db(tmp_path: Path) -> StateDB:
    db = StateDB(tmp_path / "state" / "toolkit.sqlite3")
    db.migrate()
    return db


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def metadata_repo(state_db: StateDB) -> CacheMetadataRepo:
    return CacheMetadataRepo(state_db)


@pytest.fixture
def history_repo(state_db: StateDB) -> ExecutionHistoryRepo:
    return ExecutionHistoryRepo(state_db)


@pytest.fixture
def cache(tmp_path: Path, metadata_repo: CacheMetadataRepo, clock: FrozenClock) -> ArtifactCache:
    return ArtifactCache(
        tmp_path / "cache",
        metadata_repo,
        ttl=timedelta(hours=24),
        now_provider=clock,
    )
