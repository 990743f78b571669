"""
bepoz-toolkit — repositories

File: src/bepoz_toolkit/persistence/repositories.py

Purpose
- Typed records and repositories over the state DB: cache metadata rows and
  the execution history ledger.

Functional requirements
- Cache metadata supports upsert-by-key and delete-by-expiry.
- Every write is a single transaction; re-caching a key replaces all fields at once.
- Ledger rows never store raw secrets from tool parameters.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Final

from bepoz_toolkit.observability.logging import redact_mapping
from bepoz_toolkit.persistence.state_db import RowValue, StateDB, canonical_json
from bepoz_toolkit.utils.hashing import is_sha256_hex

try:
    from datetime import UTC
except ImportError:
    UTC = timezone.utc  # noqa: UP017

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_MAX_PAGE_SIZE: Final[int] = 1_000


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Metadata row for one cached artifact, keyed by its logical path."""

    key: str
    local_path: Path
    sha256: str
    size_bytes: int
    cached_at: datetime
    expires_at: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", _as_non_empty_str(self.key, "CacheEntry.key"))
        object.__setattr__(self, "local_path", Path(self.local_path))
        if not is_sha256_hex(self.sha256):
            raise ValueError("CacheEntry.sha256: expected 64-character hex digest")
        object.__setattr__(self, "sha256", self.sha256.lower())
        object.__setattr__(
            self, "size_bytes", _as_non_negative_int(self.size_bytes, "CacheEntry.size_bytes")
        )
        object.__setattr__(
            self, "cached_at", _as_utc_datetime(self.cached_at, "CacheEntry.cached_at")
        )
        object.__setattr__(
            self, "expires_at", _as_utc_datetime(self.expires_at, "CacheEntry.expires_at")
        )

    def is_expired(self, now: datetime) -> bool:
        return _as_utc_datetime(now, "now") > self.expires_at

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "key": self.key,
            "local_path": str(self.local_path),
            "sha256": self.sha256,
            "size_bytes": self.size_bytes,
            "cached_at": _iso8601z(self.cached_at),
            "expires_at": _iso8601z(self.expires_at),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, RowValue]) -> CacheEntry:
        return cls(
            key=_row_text(row, "cache_key"),
            local_path=Path(_row_text(row, "local_path")),
            sha256=_row_text(row, "sha256"),
            size_bytes=_as_non_negative_int(row.get("size_bytes"), "cache_metadata.size_bytes"),
            cached_at=_as_utc_datetime(_row_text(row, "cached_at"), "cache_metadata.cached_at"),
            expires_at=_as_utc_datetime(_row_text(row, "expires_at"), "cache_metadata.expires_at"),
        )


@dataclass(slots=True)
class ExecutionRecord:
    """Ledger row for one finished tool run."""

    tool_id: str
    tool_name: str
    success: bool
    outcome: str
    exit_code: int
    duration_ms: int
    output: str
    error_output: str
    executed_at: datetime
    parameters: dict[str, JSONValue] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        self.id = _as_non_empty_str(self.id, "ExecutionRecord.id")
        self.tool_id = _as_non_empty_str(self.tool_id, "ExecutionRecord.tool_id")
        self.tool_name = _as_non_empty_str(self.tool_name, "ExecutionRecord.tool_name")
        self.success = bool(self.success)
        self.outcome = _as_non_empty_str(self.outcome, "ExecutionRecord.outcome")
        if isinstance(self.exit_code, bool) or not isinstance(self.exit_code, int):
            raise ValueError("ExecutionRecord.exit_code: expected integer")
        self.duration_ms = _as_non_negative_int(self.duration_ms, "ExecutionRecord.duration_ms")
        self.executed_at = _as_utc_datetime(self.executed_at, "ExecutionRecord.executed_at")
        self.parameters = redact_mapping(self.parameters)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "tool_id": self.tool_id,
            "tool_name": self.tool_name,
            "success": self.success,
            "outcome": self.outcome,
            "exit_code": self.exit_code,
            "duration_ms": self.duration_ms,
            "output": self.output,
            "error_output": self.error_output,
            "executed_at": _iso8601z(self.executed_at),
            "parameters": self.parameters,
        }

    @classmethod
    def from_row(cls, row: Mapping[str, RowValue]) -> ExecutionRecord:
        parameters = json.loads(_row_text(row, "parameters_json"))
        if not isinstance(parameters, dict):
            raise ValueError("execution_history.parameters_json: expected JSON object")
        return cls(
            id=_row_text(row, "id"),
            tool_id=_row_text(row, "tool_id"),
            tool_name=_row_text(row, "tool_name"),
            success=bool(row.get("success")),
            outcome=_row_text(row, "outcome"),
            exit_code=int(row.get("exit_code") or 0),
            duration_ms=_as_non_negative_int(row.get("duration_ms"), "duration_ms"),
            output=str(row.get("output") or ""),
            error_output=str(row.get("error_output") or ""),
            executed_at=_as_utc_datetime(_row_text(row, "executed_at"), "executed_at"),
            parameters=parameters,
        )


class _BaseRepo:
    def __init__(self, db: StateDB) -> None:
        self._db = db
        self._db.migrate()

    @staticmethod
    def _validate_limit(limit: int) -> None:
        if limit <= 0 or limit > _MAX_PAGE_SIZE:
            raise ValueError(f"limit must be in [1, {_MAX_PAGE_SIZE}]")


class CacheMetadataRepo(_BaseRepo):
    """Repository for artifact cache metadata."""

    def upsert(self, entry: CacheEntry) -> CacheEntry:
        self._db.execute(
            """
            INSERT INTO cache_metadata (
                cache_key,
                local_path,
                sha256,
                size_bytes,
                cached_at,
                expires_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(cache_key) DO UPDATE SET
                local_path=excluded.local_path,
                sha256=excluded.sha256,
                size_bytes=excluded.size_bytes,
                cached_at=excluded.cached_at,
                expires_at=excluded.expires_at
            """,
            (
                entry.key,
                str(entry.local_path),
                entry.sha256,
                entry.size_bytes,
                _iso8601z(entry.cached_at),
                _iso8601z(entry.expires_at),
            ),
        )
        return entry

    def get(self, key: str) -> CacheEntry | None:
        row = self._db.query_one(
            """
            SELECT cache_key, local_path, sha256, size_bytes, cached_at, expires_at
            FROM cache_metadata
            WHERE cache_key = ?
            """,
            (key,),
        )
        return None if row is None else CacheEntry.from_row(row)

    def list_all(self) -> list[CacheEntry]:
        rows = self._db.query_all(
            """
            SELECT cache_key, local_path, sha256, size_bytes, cached_at, expires_at
            FROM cache_metadata
            ORDER BY cache_key ASC
            """
        )
        return [CacheEntry.from_row(row) for row in rows]

    def list_expired(self, now: datetime) -> list[CacheEntry]:
        """Entries with ``expires_at < now``; ISO-8601 Z strings order lexically."""
        rows = self._db.query_all(
            """
            SELECT cache_key, local_path, sha256, size_bytes, cached_at, expires_at
            FROM cache_metadata
            WHERE expires_at < ?
            ORDER BY expires_at ASC, cache_key ASC
            """,
            (_iso8601z(now),),
        )
        return [CacheEntry.from_row(row) for row in rows]

    def delete(self, keys: Iterable[str]) -> int:
        params = [(key,) for key in keys]
        if not params:
            return 0
        return self._db.executemany("DELETE FROM cache_metadata WHERE cache_key = ?", params)

    def delete_all(self) -> int:
        return self._db.execute("DELETE FROM cache_metadata")


class ExecutionHistoryRepo(_BaseRepo):
    """Append-only ledger of tool runs with retention pruning."""

    def record(self, record: ExecutionRecord) -> ExecutionRecord:
        self._db.execute(
            """
            INSERT INTO execution_history (
                id,
                tool_id,
                tool_name,
                success,
                outcome,
                exit_code,
                duration_ms,
                output,
                error_output,
                parameters_json,
                executed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.tool_id,
                record.tool_name,
                1 if record.success else 0,
                record.outcome,
                record.exit_code,
                record.duration_ms,
                record.output,
                record.error_output,
                canonical_json(record.parameters),
                _iso8601z(record.executed_at),
            ),
        )
        return record

    def recent(self, *, limit: int = 50, tool_id: str | None = None) -> list[ExecutionRecord]:
        self._validate_limit(limit)
        if tool_id is None:
            rows = self._db.query_all(
                """
                SELECT * FROM execution_history
                ORDER BY executed_at DESC, id DESC
                LIMIT ?
                """,
                (limit,),
            )
        else:
            rows = self._db.query_all(
                """
                SELECT * FROM execution_history
                WHERE tool_id = ?
                ORDER BY executed_at DESC, id DESC
                LIMIT ?
                """,
                (_as_non_empty_str(tool_id, "tool_id"), limit),
            )
        return [ExecutionRecord.from_row(row) for row in rows]

    def usage_counts(self) -> dict[str, int]:
        rows = self._db.query_all(
            """
            SELECT tool_id, COUNT(*) AS runs
            FROM execution_history
            GROUP BY tool_id
            ORDER BY tool_id ASC
            """
        )
        return {_row_text(row, "tool_id"): int(row.get("runs") or 0) for row in rows}

    def prune_older_than(self, cutoff: datetime) -> int:
        return self._db.execute(
            "DELETE FROM execution_history WHERE executed_at < ?",
            (_iso8601z(cutoff),),
        )


def _row_text(row: Mapping[str, RowValue], key: str) -> str:
    value = row.get(key)
    if not isinstance(value, str):
        raise ValueError(f"{key}: expected text column")
    return value


def _as_non_empty_str(value: object, path: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected string")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{path}: must not be empty")
    return normalized


def _as_non_negative_int(value: object, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{path}: expected integer")
    if value < 0:
        raise ValueError(f"{path}: must be >= 0")
    return value


def _as_utc_datetime(value: object, path: str) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"{path}: invalid ISO-8601 datetime ({exc})") from exc
    else:
        raise ValueError(f"{path}: expected datetime or ISO-8601 string")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        raise ValueError(f"{path}: datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


def _iso8601z(value: datetime) -> str:
    return (
        _as_utc_datetime(value, "datetime")
        .isoformat(timespec="microseconds")
        .replace("+00:00", "Z")
    )


__all__ = [
    "CacheEntry",
    "CacheMetadataRepo",
    "ExecutionHistoryRepo",
    "ExecutionRecord",
]
