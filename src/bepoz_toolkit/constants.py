"""Stable constants shared across the toolkit."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
STATE_DB_SCHEMA_VERSION: Final[int] = 1

# Default runtime paths (relative to the working directory unless overridden by config).
CACHE_DIR: Final[PurePosixPath] = PurePosixPath("data/cache")
STATE_DB_PATH: Final[PurePosixPath] = PurePosixPath("data/state/toolkit.sqlite")
LOG_DIR: Final[PurePosixPath] = PurePosixPath("data/logs")

# Catalog defaults.
DEFAULT_CATALOG_URL: Final[str] = (
    "https://raw.githubusercontent.com/StephenShawBepoz/bepoz-toolkit/main"
)
MANIFEST_PATH: Final[str] = "manifest.json"

# Cache and pre-flight defaults.
DEFAULT_CACHE_TTL_MINUTES: Final[int] = 60
DEFAULT_CONNECT_TIMEOUT_SECONDS: Final[float] = 5.0
DEFAULT_DATABASE_PORT: Final[int] = 1433

# Fixed execution messages surfaced in results and the ledger.
CANCELLED_MESSAGE: Final[str] = "Execution was cancelled by the user."
SCRIPT_NOT_FOUND_TEMPLATE: Final[str] = "Script file not found: {path}"

__all__ = [
    "CACHE_DIR",
    "CANCELLED_MESSAGE",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_CACHE_TTL_MINUTES",
    "DEFAULT_CATALOG_URL",
    "DEFAULT_CONNECT_TIMEOUT_SECONDS",
    "DEFAULT_DATABASE_PORT",
    "LOG_DIR",
    "MANIFEST_PATH",
    "SCRIPT_NOT_FOUND_TEMPLATE",
    "STATE_DB_PATH",
    "STATE_DB_SCHEMA_VERSION",
]
