"""
spec-coordinator - filesystem utilities

Purpose
- Durable whole-file replacement for session snapshots and pointer files.
- Cheap text/binary sniffing for prompt embedding.
- Age-based pruning of state artifacts.

Atomic writes use a temp file in the destination directory and replace the
target in a single ``os.replace`` step, so readers see either the previous
snapshot or the new one, never a torn file.
"""

from __future__ import annotations

import contextlib
import json
import os
import tempfile
import time
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

PathLike = str | os.PathLike[str]

_SNIFF_BYTES = 4096

__all__ = [
    "atomic_write",
    "atomic_write_json",
    "is_within",
    "looks_like_text",
    "prune_older_than",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically replace ``path`` with ``data``.

    The parent directory is created when missing. Data is flushed and fsynced
    before the rename; the directory entry is fsynced afterwards where the
    platform allows it.
    """

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target_parent = target.parent.resolve(strict=True)

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)
    payload = data.encode(encoding) if isinstance(data, str) else data

    try:
        with os.fdopen(fd, "wb") as file_handle:
            file_handle.write(payload)
            file_handle.flush()
            os.fsync(file_handle.fileno())
        os.replace(temp_path, target)
        _fsync_directory(target_parent)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def atomic_write_json(path: PathLike, payload: object) -> None:
    """Serialize ``payload`` as indented JSON and write it atomically."""

    atomic_write(path, json.dumps(payload, indent=2, ensure_ascii=False) + "\n")


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Return ``True`` if resolved ``child`` is inside resolved ``parent``."""

    try:
        resolved_parent = Path(parent).resolve(strict=True)
        resolved_child = Path(child).resolve(strict=True)
    except FileNotFoundError:
        return False
    try:
        resolved_child.relative_to(resolved_parent)
    except ValueError:
        return False
    return True


def looks_like_text(path: PathLike) -> bool:
    """Heuristic: a file is text when its head decodes as UTF-8 and has no NUL."""

    try:
        with open(path, "rb") as handle:
            head = handle.read(_SNIFF_BYTES)
    except OSError:
        return False
    if b"\x00" in head:
        return False
    try:
        head.decode("utf-8")
    except UnicodeDecodeError as exc:
        # A multi-byte sequence cut at the sniff boundary is still text.
        return exc.start >= len(head) - 3
    return True


def prune_older_than(
    directories: Iterable[Path],
    *,
    max_age_seconds: float,
    keep: Iterable[Path] = (),
    now: float | None = None,
) -> list[Path]:
    """Delete regular files older than ``max_age_seconds``; return what was removed."""

    cutoff = (time.time() if now is None else now) - max_age_seconds
    protected = {item.resolve() for item in keep}
    removed: list[Path] = []
    for directory in directories:
        if not directory.is_dir():
            continue
        for candidate in sorted(directory.rglob("*")):
            if not candidate.is_file() or candidate.resolve() in protected:
                continue
            try:
                if candidate.stat().st_mtime >= cutoff:
                    continue
                candidate.unlink()
            except FileNotFoundError:
                continue
            removed.append(candidate)
    return removed


def _fsync_directory(path: Path) -> None:
    if os.name == "nt":
        return

    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY

    try:
        dir_fd = os.open(path, flags)
    except OSError:
        return

    try:
        os.fsync(dir_fd)
    except OSError:
        return
    finally:
        os.close(dir_fd)
