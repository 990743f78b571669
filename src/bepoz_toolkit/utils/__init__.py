"""Filesystem, hashing and cancellation helpers."""

from bepoz_toolkit.utils.concurrency import CancellationToken, run_with_deadline
from bepoz_toolkit.utils.fs import atomic_write, is_within, prune_empty_directories
from bepoz_toolkit.utils.hashing import is_sha256_hex, sha256_file

__all__ = [
    "CancellationToken",
    "atomic_write",
    "is_sha256_hex",
    "is_within",
    "prune_empty_directories",
    "run_with_deadline",
    "sha256_file",
]
