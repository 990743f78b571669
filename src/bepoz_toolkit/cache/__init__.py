"""Artifact cache: local files plus SHA-256/TTL metadata in the state DB."""

from bepoz_toolkit.cache.artifact_cache import (
    DEFAULT_TTL,
    ArtifactCache,
    CacheKeyError,
    normalize_key,
)
from bepoz_toolkit.persistence.repositories import CacheEntry

__all__ = [
    "DEFAULT_TTL",
    "ArtifactCache",
    "CacheEntry",
    "CacheKeyError",
    "normalize_key",
]
