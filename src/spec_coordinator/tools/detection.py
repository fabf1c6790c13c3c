"""Detection of locally installed agent CLIs.

Detection is offline: each command is resolved on ``PATH`` and probed with
``--version``. The resulting :class:`ToolRegistry` is built once per run and
never mutated.
"""

from __future__ import annotations

import shutil
import subprocess
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Final

from spec_coordinator.domain.models import ToolName
from spec_coordinator.tools.definitions import LEAD_PRIORITY, profile_for

_VERSION_TIMEOUT_SECONDS: Final[float] = 5.0


@dataclass(frozen=True, slots=True)
class ToolInfo:
    """Metadata about a detected agent CLI."""

    name: ToolName
    command: str
    path: str
    version: str | None = None


class ToolRegistry:
    """Immutable, priority-ordered view of the agents available for this run."""

    __slots__ = ("_tools",)

    def __init__(self, tools: Iterable[ToolInfo] = ()) -> None:
        by_name = {info.name: info for info in tools}
        self._tools: tuple[ToolInfo, ...] = tuple(
            by_name[name] for name in LEAD_PRIORITY if name in by_name
        )

    def __iter__(self) -> Iterator[ToolInfo]:
        return iter(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return any(info.name == name for info in self._tools)

    @property
    def names(self) -> tuple[ToolName, ...]:
        return tuple(info.name for info in self._tools)

    def get(self, name: ToolName) -> ToolInfo | None:
        for info in self._tools:
            if info.name == name:
                return info
        return None

    @classmethod
    def from_names(cls, names: Iterable[ToolName]) -> ToolRegistry:
        """Registry without probing; used when the caller already knows what exists."""
        commands = {ToolName(name): profile_for(name).command for name in names}
        return cls(
            ToolInfo(name=name, command=command, path=command)
            for name, command in commands.items()
        )


def detect_tool(name: ToolName) -> ToolInfo | None:
    """Detect a single agent CLI; ``None`` when it is not on ``PATH``.

    The version may be ``None`` if ``--version`` fails or times out.
    """
    command = profile_for(name).command
    path = shutil.which(command)
    if path is None:
        return None
    return ToolInfo(name=name, command=command, path=path, version=_get_version(path))


def detect_tools() -> ToolRegistry:
    """Detect every supported agent in lead-priority order."""
    found: list[ToolInfo] = []
    for name in LEAD_PRIORITY:
        info = detect_tool(name)
        if info is not None:
            found.append(info)
    return ToolRegistry(found)


def _get_version(binary_path: str) -> str | None:
    try:
        result = subprocess.run(
            [binary_path, "--version"],
            capture_output=True,
            text=True,
            timeout=_VERSION_TIMEOUT_SECONDS,
            check=False,
        )
    except (subprocess.TimeoutExpired, OSError):
        return None
    if result.returncode == 0 and result.stdout.strip():
        return result.stdout.strip().splitlines()[0]
    return None


__all__ = ["ToolInfo", "ToolRegistry", "detect_tool", "detect_tools"]
