"""
bepoz-toolkit — persistence layer

Purpose
- State DB access, migrations, and repositories for cache metadata and run history.

Non-functional requirements
- SQLite-first; avoid heavy DB dependencies.
"""

from bepoz_toolkit.persistence.repositories import (
    CacheEntry,
    CacheMetadataRepo,
    ExecutionHistoryRepo,
    ExecutionRecord,
)
from bepoz_toolkit.persistence.state_db import StateDB, StateDBError

__all__ = [
    "CacheEntry",
    "CacheMetadataRepo",
    "ExecutionHistoryRepo",
    "ExecutionRecord",
    "StateDB",
    "StateDBError",
]
