"""Unit tests for atomic writes, text sniffing and age-based pruning."""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from spec_coordinator.utils.fs import (
    atomic_write,
    atomic_write_json,
    is_within,
    looks_like_text,
    prune_older_than,
)


@pytest.mark.unit
def test_atomic_write_creates_parents_and_replaces(tmp_path: Path) -> None:
    target = tmp_path / "state" / "session"

    atomic_write(target, "first")
    atomic_write(target, b"second")

    assert target.read_text(encoding="utf-8") == "second"
    assert [item.name for item in target.parent.iterdir()] == ["session"]


@pytest.mark.unit
def test_atomic_write_failure_keeps_previous_content(tmp_path: Path) -> None:
    target = tmp_path / "snapshot.json"
    atomic_write(target, "old")

    with patch("os.replace", side_effect=OSError("disk full")), pytest.raises(OSError):
        atomic_write(target, "new")

    assert target.read_text(encoding="utf-8") == "old"
    assert [item.name for item in tmp_path.iterdir()] == ["snapshot.json"]


@pytest.mark.unit
def test_atomic_write_json_is_indented_and_newline_terminated(tmp_path: Path) -> None:
    target = tmp_path / "data.json"

    atomic_write_json(target, {"name": "Añadir", "items": [1, 2]})

    text = target.read_text(encoding="utf-8")
    assert text.endswith("}\n")
    assert "Añadir" in text
    assert json.loads(text) == {"name": "Añadir", "items": [1, 2]}


@pytest.mark.unit
def test_is_within(tmp_path: Path) -> None:
    inner = tmp_path / "specs" / "a.md"
    inner.parent.mkdir()
    inner.write_text("x", encoding="utf-8")

    assert is_within(inner, tmp_path)
    assert not is_within(tmp_path, inner.parent)
    assert not is_within(tmp_path / "missing", tmp_path)


@pytest.mark.unit
def test_looks_like_text(tmp_path: Path) -> None:
    text = tmp_path / "a.py"
    text.write_text("print('héllo')\n", encoding="utf-8")
    binary = tmp_path / "a.bin"
    binary.write_bytes(b"\x89PNG\x00\x01")
    latin = tmp_path / "b.txt"
    latin.write_bytes("café au lait".encode("latin-1"))

    assert looks_like_text(text)
    assert not looks_like_text(binary)
    assert not looks_like_text(latin)
    assert not looks_like_text(tmp_path / "missing.txt")


@pytest.mark.unit
def test_looks_like_text_tolerates_split_multibyte_at_sniff_boundary(tmp_path: Path) -> None:
    path = tmp_path / "long.md"
    path.write_bytes(b"a" * 4095 + "é".encode())

    assert looks_like_text(path)


@pytest.mark.unit
def test_prune_older_than_keeps_recent_and_protected(tmp_path: Path) -> None:
    reports = tmp_path / "reports"
    reports.mkdir()
    old = reports / "old.md"
    fresh = reports / "fresh.md"
    kept = reports / "kept.md"
    for path in (old, fresh, kept):
        path.write_text("x", encoding="utf-8")
    now = 1_000_000.0
    for path in (old, kept):
        os.utime(path, (now - 100, now - 100))
    os.utime(fresh, (now - 1, now - 1))

    removed = prune_older_than(
        [reports, tmp_path / "missing"], max_age_seconds=10, keep=[kept], now=now
    )

    assert removed == [old]
    assert sorted(path.name for path in reports.iterdir()) == ["fresh.md", "kept.md"]
