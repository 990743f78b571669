"""SHA-256 digests for cached artifacts."""

from __future__ import annotations

import hashlib
import os
import re
from typing import Final

_HEX64: Final[re.Pattern[str]] = re.compile(r"[0-9a-fA-F]{64}")


def sha256_file(path: str | os.PathLike[str], *, chunk_size: int = 1 << 20) -> str:
    """Hex digest of the file at ``path``, streamed ``chunk_size`` bytes at a time."""

    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    digest = hashlib.sha256()
    with open(path, "rb") as stream:
        for block in iter(lambda: stream.read(chunk_size), b""):
            digest.update(block)
    return digest.hexdigest()


def is_sha256_hex(value: str) -> bool:
    return _HEX64.fullmatch(value) is not None


__all__ = ["is_sha256_hex", "sha256_file"]
