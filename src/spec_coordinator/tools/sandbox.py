"""Container isolation for agent processes.

The working directory is bind-mounted at ``/workspace`` and the agent's own
command line is passed through unchanged.
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Final

from spec_coordinator.errors import SandboxUnavailableError
from spec_coordinator.tools.definitions import Invocation

CONTAINER_WORKDIR: Final[str] = "/workspace"
DEFAULT_SANDBOX_IMAGE: Final[str] = "node:20"


class SandboxBackend(str, Enum):
    """Container runtimes accepted for sandboxed runs."""

    DOCKER = "docker"
    PODMAN = "podman"


@dataclass(frozen=True, slots=True)
class SandboxSettings:
    enabled: bool = False
    backend: SandboxBackend = SandboxBackend.DOCKER
    image: str = DEFAULT_SANDBOX_IMAGE

    def __post_init__(self) -> None:
        object.__setattr__(self, "backend", _coerce_backend(self.backend))
        if not self.image.strip():
            raise ValueError("sandbox image must be non-empty")


def wrap_invocation(invocation: Invocation, cwd: Path | str, settings: SandboxSettings) -> Invocation:
    """Return ``invocation`` rewritten to run inside a throwaway container."""

    if not settings.enabled:
        return invocation
    mount = f"{Path(cwd).resolve()}:{CONTAINER_WORKDIR}"
    runtime_args: list[str] = ["run", "--rm"]
    if invocation.stdin_text is not None or invocation.inherit_stdin:
        runtime_args.append("-i")
    if invocation.inherit_stdin:
        runtime_args.append("-t")
    runtime_args.extend(["-v", mount, "-w", CONTAINER_WORKDIR, settings.image])
    return Invocation(
        command=settings.backend.value,
        args=(*runtime_args, *invocation.argv),
        stdin_text=invocation.stdin_text,
        inherit_stdin=invocation.inherit_stdin,
        warnings=invocation.warnings,
    )


def ensure_sandbox_available(settings: SandboxSettings) -> str:
    """Return the runtime's version line or raise :class:`SandboxUnavailableError`."""

    runtime = settings.backend.value
    path = shutil.which(runtime)
    if path is None:
        raise SandboxUnavailableError(
            f"Sandbox requested but {runtime} is not installed or not on PATH."
        )
    try:
        result = subprocess.run(
            [path, "--version"],
            capture_output=True,
            text=True,
            timeout=10,
            check=False,
        )
    except (subprocess.TimeoutExpired, OSError) as exc:
        raise SandboxUnavailableError(f"Sandbox runtime {runtime} is not usable: {exc}") from exc
    if result.returncode != 0:
        detail = (result.stderr or result.stdout).strip()
        raise SandboxUnavailableError(f"Sandbox runtime {runtime} is not usable: {detail}")
    return result.stdout.strip().splitlines()[0] if result.stdout.strip() else runtime


def _coerce_backend(value: SandboxBackend | str) -> SandboxBackend:
    if isinstance(value, SandboxBackend):
        return value
    try:
        return SandboxBackend(value.strip().lower())
    except ValueError as exc:
        allowed = ", ".join(item.value for item in SandboxBackend)
        raise ValueError(f"unsupported sandbox backend {value!r}; expected one of: {allowed}") from exc


__all__ = [
    "CONTAINER_WORKDIR",
    "DEFAULT_SANDBOX_IMAGE",
    "SandboxBackend",
    "SandboxSettings",
    "ensure_sandbox_available",
    "wrap_invocation",
]
