"""Unit tests for atomic writes, containment checks and SHA-256 helpers."""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

import pytest

from bepoz_toolkit.utils.fs import atomic_write, is_within, prune_empty_directories
from bepoz_toolkit.utils.hashing import is_sha256_hex, sha256_file

if TYPE_CHECKING:
    from pathlib import Path


def test_atomic_write_replaces_content_and_leaves_no_temp_files(tmp_path: Path) -> None:
    target = tmp_path / "script.ps1"
    atomic_write(target, b"first")
    atomic_write(target, "second")

    assert target.read_bytes() == b"second"
    assert [item.name for item in tmp_path.iterdir()] == ["script.ps1"]


def test_atomic_write_requires_existing_parent(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        atomic_write(tmp_path / "missing" / "a.txt", b"x")


def test_is_within(tmp_path: Path) -> None:
    root = tmp_path / "cache"
    assert is_within(root / "tools" / "a.ps1", root) is True
    assert is_within(root / ".." / "elsewhere", root) is False
    assert is_within(tmp_path, root) is False


def test_prune_empty_directories_keeps_root_and_non_empty(tmp_path: Path) -> None:
    (tmp_path / "a" / "b" / "c").mkdir(parents=True)
    (tmp_path / "keep").mkdir()
    (tmp_path / "keep" / "file.txt").write_text("x", encoding="utf-8")

    removed = prune_empty_directories(tmp_path)

    assert removed == 3
    assert sorted(item.name for item in tmp_path.iterdir()) == ["keep"]
    assert prune_empty_directories(tmp_path / "missing") == 0


def test_sha256_file_matches_hashlib_for_any_chunk_size(tmp_path: Path) -> None:
    payload = "Get-Service | Where Status -eq 'Running'"
    path = tmp_path / "payload.ps1"
    path.write_bytes(payload.encode("utf-8"))

    expected = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    assert sha256_file(path) == expected
    assert sha256_file(path, chunk_size=3) == expected


def test_sha256_file_rejects_bad_chunk_size(tmp_path: Path) -> None:
    path = tmp_path / "a"
    path.write_bytes(b"")
    with pytest.raises(ValueError):
        sha256_file(path, chunk_size=0)


def test_is_sha256_hex() -> None:
    assert is_sha256_hex("a" * 64) is True
    assert is_sha256_hex("A" * 64) is True
    assert is_sha256_hex("a" * 63) is False
    assert is_sha256_hex("g" * 64) is False
