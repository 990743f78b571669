"""
bepoz-toolkit — filesystem helpers for the artifact cache

File: src/bepoz_toolkit/utils/fs.py

Purpose
- Crash-safe artifact writes and cache-root containment.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """Replace ``path`` with ``data`` so readers see the old file or the new one, never a mix.

    The temp file lives beside the target, so the parent directory must exist.
    """

    target = Path(path)
    directory = target.parent.resolve(strict=True)
    payload = data.encode(encoding) if isinstance(data, str) else data

    with tempfile.NamedTemporaryFile(
        "wb", dir=directory, prefix=f".{target.name}.", suffix=".tmp", delete=False
    ) as staged:
        try:
            staged.write(payload)
            staged.flush()
            os.fsync(staged.fileno())
        except BaseException:
            staged.close()
            os.unlink(staged.name)
            raise
    try:
        os.replace(staged.name, target)
    except BaseException:
        os.unlink(staged.name)
        raise
    _sync_dir(directory)


def is_within(child: PathLike, parent: PathLike) -> bool:
    """True when ``child`` resolves, symlinks included, to ``parent`` or below it."""

    return Path(child).resolve().is_relative_to(Path(parent).resolve())


def prune_empty_directories(root: PathLike) -> int:
    """Remove empty directories under ``root``, deepest first; ``root`` itself stays."""

    base = Path(root)
    if not base.is_dir():
        return 0
    removed = 0
    for current, _subdirs, _files in os.walk(base, topdown=False):
        candidate = Path(current)
        if candidate == base or any(candidate.iterdir()):
            continue
        candidate.rmdir()
        removed += 1
    return removed


def _sync_dir(directory: Path) -> None:
    if os.name == "nt":
        return
    fd = os.open(directory, os.O_RDONLY | getattr(os, "O_DIRECTORY", 0))
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


__all__ = ["atomic_write", "is_within", "prune_empty_directories"]
