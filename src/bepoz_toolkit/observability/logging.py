"""
bepoz-toolkit — structured logging

File: src/bepoz_toolkit/observability/logging.py

Purpose
- Write every log event of a toolkit session as one JSON object per line.

Functional requirements
- Producers never block: records go through a bounded queue and overflow is counted.
- Correlation fields (run, tool) bound with ``correlation_scope`` follow the record.
- Tokens, passwords and connection-string secrets never reach the sink.
- ``structlog`` events from components land in the same file, kwargs under ``fields``.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import re
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Final, cast

import structlog

try:
    from datetime import UTC
except ImportError:
    UTC = timezone.utc  # noqa: UP017

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
LogRedactor = Callable[[JSONValue], JSONValue]

REDACTED: Final[str] = "***REDACTED***"

_SECRET_KEY_PARTS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passwd",
    "pwd",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "connection_string",
    "license_key",
)
_SECRET_TEXT_RULES: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
    (
        re.compile(r"(?i)\b(api[_-]?key|token|password|pwd|secret|authorization)(\s*[:=]\s*)[^\s,;]+"),
        rf"\1\2{REDACTED}",
    ),
    (re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*"), f"Bearer {REDACTED}"),
    (re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}\b"), REDACTED),
)

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRS: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "correlation"}

_correlation: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "bepoz_toolkit_correlation", default=()
)


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Settings for one session's JSONL sink."""

    session_id: str
    log_dir: Path | str = Path("data/logs")
    logger_name: str = "bepoz_toolkit"
    level: int | str = "INFO"
    queue_size: int = 4096
    log_filename: str = "toolkit.jsonl"
    log_to_stderr: bool = False
    max_bytes: int = 10_000_000
    backup_count: int = 5
    redact_secrets: bool = True


class _OverflowingQueueHandler(logging.handlers.QueueHandler):
    """Enqueue without blocking; records that do not fit are counted and discarded."""

    def __init__(self, records: queue.Queue[object]) -> None:
        super().__init__(records)
        self._overflow_lock = threading.Lock()
        self.overflow = 0

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # The listener thread has its own context; snapshot the producer's here.
        bound = _correlation.get()
        if bound:
            record.correlation = dict(bound)
        return cast("logging.LogRecord", super().prepare(record))

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._overflow_lock:
                self.overflow += 1


class _JsonLinesFormatter(logging.Formatter):
    def __init__(self, *, session_id: str, redactor: LogRedactor) -> None:
        super().__init__()
        self._session_id = session_id
        self._redact = redactor

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, JSONValue] = {
            "timestamp": _utc_iso(datetime.fromtimestamp(record.created, tz=UTC), "milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "session_id": self._session_id,
            "message": self._text(record.getMessage()),
        }
        correlation = getattr(record, "correlation", None)
        if isinstance(correlation, Mapping):
            line.update({str(k): str(v) for k, v in correlation.items() if str(v).strip()})

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        if extra:
            line["fields"] = self._redact(to_json_value(extra))
        if record.exc_info:
            line["exception"] = self._text(self.formatException(record.exc_info))
        return json.dumps(line, sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def _text(self, message: str) -> str:
        scrubbed = self._redact(message)
        return scrubbed if isinstance(scrubbed, str) else json.dumps(scrubbed)


class StructuredLoggingHandle:
    """An installed sink; shut it down to drain the queue and close files."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        session_id: str,
        log_path: Path,
        queue_handler: _OverflowingQueueHandler,
        listener: logging.handlers.QueueListener,
        sinks: tuple[logging.Handler, ...],
    ) -> None:
        self.logger = logger
        self.session_id = session_id
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._listener = listener
        self._sinks = sinks
        self._lock = threading.Lock()
        self._closed = False

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.overflow

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        pending = cast("queue.Queue[object]", self._queue_handler.queue)
        give_up = time.monotonic() + max(timeout_seconds, 0.0)
        while pending.unfinished_tasks and time.monotonic() < give_up:
            time.sleep(0.01)
        for sink in self._sinks:
            sink.flush()

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        with self._lock:
            if self._closed:
                return
            self.flush(timeout_seconds=timeout_seconds)
            # stop() enqueues a sentinel and joins after the remaining records are written
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.close()
            self._closed = True


class _ActiveSink:
    """Process-wide slot for the installed handle."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handle: StructuredLoggingHandle | None = None
        self._hooked = False

    def get(self) -> StructuredLoggingHandle | None:
        with self._lock:
            return self._handle

    def replace(self, handle: StructuredLoggingHandle | None) -> None:
        with self._lock:
            self._handle = handle
            if handle is not None and not self._hooked:
                atexit.register(shutdown_logging)
                self._hooked = True

    def release(self, handle: StructuredLoggingHandle) -> None:
        with self._lock:
            if self._handle is handle:
                self._handle = None


_ACTIVE = _ActiveSink()


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Install a queue-backed JSONL sink on ``config.logger_name``, replacing any active one."""

    session_id = _required_text(config.session_id, "session_id")
    logger_name = _required_text(config.logger_name, "logger_name")
    filename = _required_text(config.log_filename, "log_filename")
    if Path(filename).name != filename:
        raise ValueError("log_filename must not include path separators")
    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    level = _level_number(config.level)

    shutdown_logging()

    log_dir = Path(config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / filename
    formatter = _JsonLinesFormatter(
        session_id=session_id,
        redactor=default_log_redactor if config.redact_secrets else (lambda value: value),
    )

    sinks: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=max(1, config.max_bytes),
            backupCount=max(1, config.backup_count),
            encoding="utf-8",
        )
    ]
    if config.log_to_stderr:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(logger_name)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(level)
    logger.propagate = False

    queue_handler = _OverflowingQueueHandler(queue.Queue(maxsize=config.queue_size))
    queue_handler.setLevel(level)
    listener = logging.handlers.QueueListener(
        queue_handler.queue, *sinks, respect_handler_level=True
    )
    listener.start()
    logger.addHandler(queue_handler)

    handle = StructuredLoggingHandle(
        logger=logger,
        session_id=session_id,
        log_path=log_path,
        queue_handler=queue_handler,
        listener=listener,
        sinks=tuple(sinks),
    )
    _ACTIVE.replace(handle)
    return handle


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    session_id: str,
    log_dir: Path | str,
) -> StructuredLoggingHandle:
    """Install the sink from an ``[observability]`` table and route structlog into it."""

    section = observability_config or {}
    level = section.get("log_level", "INFO")
    handle = setup_structured_logging(
        LoggingConfig(
            session_id=session_id,
            log_dir=log_dir,
            level=level if isinstance(level, (int, str)) else "INFO",
            redact_secrets=bool(section.get("redact_secrets", True)),
        )
    )
    configure_structlog()
    return handle


def configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def shutdown_logging(
    handle: StructuredLoggingHandle | None = None,
    *,
    timeout_seconds: float = 2.0,
) -> None:
    target = handle if handle is not None else _ACTIVE.get()
    if target is None:
        return
    target.shutdown(timeout_seconds=timeout_seconds)
    _ACTIVE.release(target)


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    return _ACTIVE.get()


def get_correlation_context() -> dict[str, str]:
    return dict(_correlation.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for records logged inside the block; ``None`` unbinds a key."""

    bound = get_correlation_context()
    for key, value in fields.items():
        name = _required_text(key, "correlation key")
        if value is None:
            bound.pop(name, None)
        else:
            bound[name] = _required_text(value, "correlation value")
    token = _correlation.set(tuple(bound.items()))
    try:
        yield
    finally:
        _correlation.reset(token)


def default_log_redactor(value: JSONValue) -> JSONValue:
    return _scrub(value, under_key=None)


def redact_mapping(payload: Mapping[str, object]) -> dict[str, JSONValue]:
    """JSON-safe copy of ``payload`` with secret keys and inline credentials masked."""

    return cast("dict[str, JSONValue]", default_log_redactor(to_json_value(dict(payload))))


def to_json_value(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return _utc_iso(aware, "microseconds")
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): to_json_value(item) for key, item in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted((to_json_value(item) for item in value), key=repr)
    if isinstance(value, (list, tuple)):
        return [to_json_value(item) for item in value]
    return repr(value)


def _scrub(value: JSONValue, *, under_key: str | None) -> JSONValue:
    if under_key is not None and any(part in under_key.lower() for part in _SECRET_KEY_PARTS):
        return REDACTED
    if isinstance(value, dict):
        return {key: _scrub(item, under_key=key) for key, item in value.items()}
    if isinstance(value, list):
        return [_scrub(item, under_key=None) for item in value]
    if isinstance(value, str):
        for pattern, replacement in _SECRET_TEXT_RULES:
            value = pattern.sub(replacement, value)
    return value


def _required_text(value: object, label: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{label} must be a string, got {type(value).__name__}")
    text = value.strip()
    if not text:
        raise ValueError(f"{label} must not be empty")
    return text


def _level_number(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unsupported logging level {level!r}")
    return resolved


def _utc_iso(moment: datetime, timespec: str) -> str:
    return moment.astimezone(UTC).isoformat(timespec=timespec).replace("+00:00", "Z")


__all__ = [
    "REDACTED",
    "JSONScalar",
    "JSONValue",
    "LogRedactor",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "redact_mapping",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
    "to_json_value",
]
