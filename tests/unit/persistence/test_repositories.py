"""Repository tests: cache metadata upserts/expiry and the execution history ledger."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from bepoz_toolkit.persistence.repositories import (
    CacheEntry,
    CacheMetadataRepo,
    ExecutionHistoryRepo,
    ExecutionRecord,
)

_T0 = datetime(2026, 2, 1, 8, 0, tzinfo=timezone.utc)


def _entry(key: str, *, cached_at: datetime = _T0, ttl: timedelta = timedelta(hours=1), digest: str = "a") -> CacheEntry:
    return CacheEntry(
        key=key,
        local_path=Path("/cache") / key,
        sha256=digest * 64,
        size_bytes=10,
        cached_at=cached_at,
        expires_at=cached_at + ttl,
    )


def _record(tool_id: str, executed_at: datetime, **overrides) -> ExecutionRecord:
    values = {
        "tool_id": tool_id,
        "tool_name": tool_id.title(),
        "success": True,
        "outcome": "completed",
        "exit_code": 0,
        "duration_ms": 1200,
        "output": "done",
        "error_output": "",
        "executed_at": executed_at,
    }
    values.update(overrides)
    return ExecutionRecord(**values)


def test_cache_entry_validation() -> None:
    with pytest.raises(ValueError, match="sha256"):
        CacheEntry(key="k", local_path=Path("/x"), sha256="abc", size_bytes=1, cached_at=_T0, expires_at=_T0)
    with pytest.raises(ValueError, match="timezone-aware"):
        CacheEntry(
            key="k",
            local_path=Path("/x"),
            sha256="a" * 64,
            size_bytes=1,
            cached_at=datetime(2026, 1, 1),
            expires_at=_T0,
        )
    with pytest.raises(ValueError, match=">= 0"):
        CacheEntry(
            key="k", local_path=Path("/x"), sha256="a" * 64, size_bytes=-1, cached_at=_T0, expires_at=_T0
        )


def test_upsert_replaces_every_field(metadata_repo: CacheMetadataRepo) -> None:
    metadata_repo.upsert(_entry("tools/a.ps1"))
    later = _entry("tools/a.ps1", cached_at=_T0 + timedelta(hours=3), digest="b")

    metadata_repo.upsert(later)

    stored = metadata_repo.get("tools/a.ps1")
    assert stored == later
    assert len(metadata_repo.list_all()) == 1


def test_get_missing_returns_none(metadata_repo: CacheMetadataRepo) -> None:
    assert metadata_repo.get("nope") is None


def test_list_expired_uses_strict_comparison(metadata_repo: CacheMetadataRepo) -> None:
    metadata_repo.upsert(_entry("a", ttl=timedelta(minutes=10)))
    metadata_repo.upsert(_entry("b", ttl=timedelta(minutes=30)))

    boundary = _T0 + timedelta(minutes=10)
    assert metadata_repo.list_expired(boundary) == []
    assert [item.key for item in metadata_repo.list_expired(boundary + timedelta(microseconds=1))] == ["a"]
    assert [item.key for item in metadata_repo.list_expired(_T0 + timedelta(hours=1))] == ["a", "b"]


def test_delete_and_delete_all(metadata_repo: CacheMetadataRepo) -> None:
    for key in ("a", "b", "c"):
        metadata_repo.upsert(_entry(key))

    assert metadata_repo.delete([]) == 0
    assert metadata_repo.delete(["a", "missing"]) == 1
    assert [item.key for item in metadata_repo.list_all()] == ["b", "c"]
    assert metadata_repo.delete_all() == 2
    assert metadata_repo.list_all() == []


def test_history_round_trip_and_ordering(history_repo: ExecutionHistoryRepo) -> None:
    history_repo.record(_record("reset-till", _T0))
    history_repo.record(_record("list-venues", _T0 + timedelta(minutes=5), success=False, outcome="failed", exit_code=2))
    history_repo.record(_record("reset-till", _T0 + timedelta(minutes=10)))

    recent = history_repo.recent(limit=10)
    assert [item.executed_at for item in recent] == [
        _T0 + timedelta(minutes=10),
        _T0 + timedelta(minutes=5),
        _T0,
    ]
    assert recent[1].success is False
    assert recent[1].exit_code == 2

    only_reset = history_repo.recent(tool_id="reset-till")
    assert {item.tool_id for item in only_reset} == {"reset-till"}
    assert history_repo.usage_counts() == {"list-venues": 1, "reset-till": 2}


def test_history_parameters_are_redacted(history_repo: ExecutionHistoryRepo) -> None:
    history_repo.record(
        _record(
            "sync",
            _T0,
            parameters={"Server": "POS-SQL01", "Password": "s3cret", "Conn": "Server=x;Password=abc;"},
        )
    )

    stored = history_repo.recent()[0].parameters
    assert stored["Server"] == "POS-SQL01"
    assert stored["Password"] == "***REDACTED***"
    assert "abc" not in str(stored["Conn"])


def test_prune_older_than(history_repo: ExecutionHistoryRepo) -> None:
    history_repo.record(_record("a", _T0 - timedelta(days=40)))
    history_repo.record(_record("b", _T0))

    assert history_repo.prune_older_than(_T0 - timedelta(days=30)) == 1
    assert [item.tool_id for item in history_repo.recent()] == ["b"]


def test_recent_limit_bounds(history_repo: ExecutionHistoryRepo) -> None:
    with pytest.raises(ValueError):
        history_repo.recent(limit=0)
    with pytest.raises(ValueError):
        history_repo.recent(limit=5_000)


def test_record_to_dict_uses_z_suffix() -> None:
    payload = _record("a", _T0).to_dict()

    assert payload["executed_at"] == "2026-02-01T08:00:00.000000Z"
    assert payload["success"] is True
