"""Stable constants shared across the coordinator."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
SESSION_SCHEMA_VERSION: Final[int] = 1

# State layout (relative to the working directory).
STATE_DIR: Final[PurePosixPath] = PurePosixPath(".spec-coord")
SESSION_POINTER_FILE: Final[str] = "session"
SESSIONS_DIR: Final[str] = "sessions"
REPORTS_DIR: Final[str] = "reports"
LOGS_DIR: Final[str] = "logs"
SPECS_DIR: Final[PurePosixPath] = PurePosixPath("specs")

# Directories never listed or embedded in prompts.
IGNORED_DIR_NAMES: Final[frozenset[str]] = frozenset(
    {".git", "node_modules", "dist", "__pycache__", ".venv", str(STATE_DIR)}
)

# Process exit status used for interrupted runs.
INTERRUPTED_EXIT_STATUS: Final[int] = 130

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "IGNORED_DIR_NAMES",
    "INTERRUPTED_EXIT_STATUS",
    "LOGS_DIR",
    "REPORTS_DIR",
    "SESSIONS_DIR",
    "SESSION_POINTER_FILE",
    "SESSION_SCHEMA_VERSION",
    "SPECS_DIR",
    "STATE_DIR",
]
