"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest
import structlog
from support import ScriptedRunner


@pytest.fixture
def scripted_runner() -> ScriptedRunner:
    return ScriptedRunner()


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A working directory with an empty ``specs/`` folder."""

    (tmp_path / "specs").mkdir()
    return tmp_path


@pytest.fixture(autouse=True)
def _reset_structlog() -> None:
    structlog.reset_defaults()
