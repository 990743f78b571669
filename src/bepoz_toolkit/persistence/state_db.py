"""
bepoz-toolkit — state database

File: src/bepoz_toolkit/persistence/state_db.py

Purpose
- One SQLite file holding the artifact cache metadata and the execution ledger.

Functional requirements
- Versioned, checksummed migrations applied idempotently on open.
- Every individual write runs in its own transaction; last writer wins per key.
- Lock contention is retried with exponential backoff before surfacing.

Non-functional requirements
- Short-lived connections only, so cache probes never hold locks across calls.
"""

from __future__ import annotations

import hashlib
import json
import sqlite3
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from itertools import count
from pathlib import Path
from typing import Final, TypeVar

from bepoz_toolkit.constants import STATE_DB_SCHEMA_VERSION

try:
    from datetime import UTC
except ImportError:
    UTC = timezone.utc  # noqa: UP017

T = TypeVar("T")

SQLValue = str | int | float | bytes | None
SQLParams = Sequence[SQLValue]
RowValue = SQLValue

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25

_VERSION_TABLE: Final[str] = """
CREATE TABLE IF NOT EXISTS schema_versions (
    version INTEGER PRIMARY KEY CHECK (version > 0),
    name TEXT NOT NULL,
    checksum TEXT NOT NULL CHECK (length(checksum) = 64),
    applied_at TEXT NOT NULL
)
"""


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    version: int
    name: str
    checksum: str
    applied_at: str


@dataclass(frozen=True, slots=True)
class Migration:
    """Schema step; ``checksum`` pins its text so edited history is detected."""

    version: int
    name: str
    statements: tuple[str, ...]

    @property
    def checksum(self) -> str:
        digest = hashlib.sha256(f"{self.version}:{self.name}\n".encode())
        for statement in self.statements:
            lines = (line.rstrip() for line in statement.strip().splitlines())
            digest.update("\n".join(lines).encode("utf-8") + b"\n--\n")
        return digest.hexdigest()


MIGRATIONS: Final[tuple[Migration, ...]] = (
    Migration(
        version=1,
        name="cache_and_history",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS cache_metadata (
                cache_key TEXT PRIMARY KEY,
                local_path TEXT NOT NULL,
                sha256 TEXT NOT NULL CHECK (length(sha256) = 64),
                size_bytes INTEGER NOT NULL CHECK (size_bytes >= 0),
                cached_at TEXT NOT NULL,
                expires_at TEXT NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_cache_metadata_expires ON cache_metadata(expires_at)",
            """
            CREATE TABLE IF NOT EXISTS execution_history (
                id TEXT PRIMARY KEY,
                tool_id TEXT NOT NULL,
                tool_name TEXT NOT NULL,
                success INTEGER NOT NULL CHECK (success IN (0, 1)),
                outcome TEXT NOT NULL,
                exit_code INTEGER NOT NULL,
                duration_ms INTEGER NOT NULL CHECK (duration_ms >= 0),
                output TEXT NOT NULL,
                error_output TEXT NOT NULL,
                parameters_json TEXT NOT NULL,
                executed_at TEXT NOT NULL
            )
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_execution_history_tool_executed
            ON execution_history(tool_id, executed_at DESC)
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_execution_history_executed
            ON execution_history(executed_at DESC)
            """,
        ),
    ),
)

_BUSY_CODES: Final[frozenset[int]] = frozenset(
    getattr(sqlite3, name)
    for name in ("SQLITE_BUSY", "SQLITE_BUSY_RECOVERY", "SQLITE_BUSY_SNAPSHOT", "SQLITE_LOCKED")
    if isinstance(getattr(sqlite3, name, None), int)
)
_CORRUPT_CODES: Final[frozenset[int]] = frozenset(
    getattr(sqlite3, name)
    for name in ("SQLITE_CORRUPT", "SQLITE_NOTADB")
    if isinstance(getattr(sqlite3, name, None), int)
)
_BUSY_TEXT: Final[tuple[str, ...]] = ("database is locked", "table is locked", "schema is locked")
_CORRUPT_TEXT: Final[tuple[str, ...]] = ("malformed", "file is not a database")


class StateDBError(RuntimeError):
    """Base class for state database failures."""


class StateDBBusyError(StateDBError):
    """Lock contention outlasted every retry."""


class StateDBMigrationError(StateDBError):
    """The on-disk schema cannot be brought to this release's version."""


class StateDBCorruptionError(StateDBError):
    """SQLite reported a damaged database file."""


def _matches(exc: sqlite3.Error, codes: frozenset[int], fragments: tuple[str, ...]) -> bool:
    code = getattr(exc, "sqlite_errorcode", None)
    if isinstance(code, int) and code in codes:
        return True
    text = str(exc).lower()
    return any(fragment in text for fragment in fragments)


class StateDB:
    """Connection factory, migrator and retrying statement runner for the state file."""

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> None:
        for label, value in (
            ("busy_timeout_ms", busy_timeout_ms),
            ("busy_retry_limit", busy_retry_limit),
            ("busy_retry_backoff_ms", busy_retry_backoff_ms),
        ):
            if value < 0:
                raise ValueError(f"{label} must be >= 0")
        self._path = Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._retry_limit = busy_retry_limit
        self._backoff_seconds = busy_retry_backoff_ms / 1000.0
        self._savepoints = count(1)

    @property
    def path(self) -> Path:
        return self._path

    # -- connections ---------------------------------------------------

    def connect(self) -> sqlite3.Connection:
        """Open an autocommit connection in WAL mode; the caller closes it."""

        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self._path,
            timeout=self._busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
            mode = conn.execute("PRAGMA journal_mode=WAL").fetchone()
        except sqlite3.Error as exc:
            conn.close()
            raise self._wrap(exc, "configure connection") from exc
        if mode is None or str(mode[0]).lower() != "wal":
            conn.close()
            raise StateDBError(f"{self._path}: WAL journal mode unavailable")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _borrow(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        with self.connection() as owned:
            yield owned

    @contextmanager
    def transaction(
        self,
        *,
        conn: sqlite3.Connection | None = None,
        immediate: bool = True,
    ) -> Iterator[sqlite3.Connection]:
        """Atomic block; nests as a savepoint when ``conn`` is already in a transaction."""

        with self._borrow(conn) as active:
            if active.in_transaction:
                name = f"sp_{next(self._savepoints)}"
                begin, commit = f"SAVEPOINT {name}", f"RELEASE SAVEPOINT {name}"
                rollback: tuple[str, ...] = (f"ROLLBACK TO SAVEPOINT {name}", commit)
            else:
                begin = "BEGIN IMMEDIATE" if immediate else "BEGIN"
                commit, rollback = "COMMIT", ("ROLLBACK",)

            self._run(active, begin)
            try:
                yield active
            except BaseException:
                for statement in rollback:
                    self._run(active, statement)
                raise
            self._run(active, commit)

    # -- schema --------------------------------------------------------

    def migrate(self) -> int:
        """Bring the schema to this release's version; safe to call on every open."""

        known = [migration.version for migration in MIGRATIONS]
        if known != list(range(1, len(known) + 1)) or STATE_DB_SCHEMA_VERSION > len(known):
            raise StateDBMigrationError(
                f"migration chain {known} cannot reach schema version {STATE_DB_SCHEMA_VERSION}"
            )

        with self.connection() as conn:
            self._run(conn, _VERSION_TABLE)
            applied = self._applied(conn)
            newest = max(applied, default=0)
            if newest > STATE_DB_SCHEMA_VERSION:
                raise StateDBMigrationError(
                    f"{self._path} was written by a newer release "
                    f"(schema {newest}, this release supports {STATE_DB_SCHEMA_VERSION})"
                )

            for migration in MIGRATIONS[:STATE_DB_SCHEMA_VERSION]:
                record = applied.get(migration.version)
                if record is not None:
                    if record.checksum != migration.checksum:
                        raise StateDBMigrationError(
                            f"migration {migration.version} ({migration.name}) was altered after "
                            "being applied"
                        )
                    continue
                with self.transaction(conn=conn) as tx:
                    for statement in migration.statements:
                        self._run(tx, statement)
                    self._run(
                        tx,
                        "INSERT INTO schema_versions (version, name, checksum, applied_at) "
                        "VALUES (?, ?, ?, ?)",
                        (migration.version, migration.name, migration.checksum, _utc_now_iso()),
                    )
            return self.schema_version(conn=conn)

    def schema_version(self, *, conn: sqlite3.Connection | None = None) -> int:
        row = self.query_one(
            "SELECT COALESCE(MAX(version), 0) AS version FROM schema_versions", conn=conn
        )
        return 0 if row is None else int(row["version"] or 0)

    def _applied(self, conn: sqlite3.Connection) -> dict[int, MigrationRecord]:
        rows = self._run(
            conn, "SELECT version, name, checksum, applied_at FROM schema_versions"
        ).fetchall()
        return {
            int(row["version"]): MigrationRecord(
                version=int(row["version"]),
                name=str(row["name"]),
                checksum=str(row["checksum"]),
                applied_at=str(row["applied_at"]),
            )
            for row in rows
        }

    # -- statements ----------------------------------------------------

    def execute(
        self, sql: str, params: SQLParams = (), *, conn: sqlite3.Connection | None = None
    ) -> int:
        """Run one write and return the affected row count."""

        if conn is not None:
            return self._run(conn, sql, params).rowcount
        with self.transaction() as tx:
            return self._run(tx, sql, params).rowcount

    def executemany(
        self,
        sql: str,
        params_iter: Iterable[SQLParams],
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        batch = [tuple(params) for params in params_iter]
        with self.transaction(conn=conn) as tx:
            return self._retrying("execute many", lambda: tx.executemany(sql, batch).rowcount)

    def query_all(
        self, sql: str, params: SQLParams = (), *, conn: sqlite3.Connection | None = None
    ) -> list[dict[str, RowValue]]:
        with self._borrow(conn) as active:
            return [dict(row) for row in self._run(active, sql, params).fetchall()]

    def query_one(
        self, sql: str, params: SQLParams = (), *, conn: sqlite3.Connection | None = None
    ) -> dict[str, RowValue] | None:
        with self._borrow(conn) as active:
            row = self._run(active, sql, params).fetchone()
        return None if row is None else dict(row)

    def integrity_check(self, *, max_errors: int = 100) -> tuple[str, ...]:
        """SQLite ``integrity_check`` findings; empty when the file is healthy."""

        if max_errors <= 0:
            raise ValueError("max_errors must be > 0")
        findings = tuple(
            str(row["integrity_check"])
            for row in self.query_all(f"PRAGMA integrity_check({int(max_errors)})")
        )
        return () if findings == ("ok",) else findings

    # -- retry and error mapping ---------------------------------------

    def _run(self, conn: sqlite3.Connection, sql: str, params: SQLParams = ()) -> sqlite3.Cursor:
        operation = " ".join(sql.split()[:2]).lower() or "statement"
        return self._retrying(operation, lambda: conn.execute(sql, tuple(params)))

    def _retrying(self, operation: str, call: Callable[[], T]) -> T:
        attempt = 0
        while True:
            try:
                return call()
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                busy = _matches(exc, _BUSY_CODES, _BUSY_TEXT)
                if not busy or attempt >= self._retry_limit:
                    raise self._wrap(exc, operation, attempts=attempt + 1) from exc
                time.sleep(self._backoff_seconds * (2**attempt))
                attempt += 1

    def _wrap(self, exc: sqlite3.Error, operation: str, *, attempts: int = 1) -> StateDBError:
        if _matches(exc, _CORRUPT_CODES, _CORRUPT_TEXT):
            return StateDBCorruptionError(
                f"{operation} failed for {self._path}: {exc}. "
                "Delete the state database; cache metadata is rebuilt on the next fetch."
            )
        if _matches(exc, _BUSY_CODES, _BUSY_TEXT):
            return StateDBBusyError(
                f"{operation} still locked after {attempts} attempt(s) on {self._path}: {exc}"
            )
        return StateDBError(f"{operation} failed for {self._path}: {exc}")


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def canonical_json(value: object) -> str:
    """Deterministic JSON for persisted payloads."""

    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


__all__ = [
    "DEFAULT_BUSY_RETRY_BACKOFF_MS",
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "MIGRATIONS",
    "Migration",
    "MigrationRecord",
    "RowValue",
    "SQLParams",
    "SQLValue",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
    "canonical_json",
]
