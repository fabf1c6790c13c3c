"""Async execution of agent CLIs as opaque child processes.

The runner is stateless per call: it maps ``(role, tool, prompt, directory,
timeout)`` to an :class:`ExecutionResult`. Process-scoped state (interrupt
token, live process set, throttle, heartbeat) belongs to the
:class:`~spec_coordinator.orchestration.context.RunContext` handed in by the
caller.
"""

from __future__ import annotations

import asyncio
import re
import time
from contextlib import suppress
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final, Protocol

import structlog

from spec_coordinator.constants import INTERRUPTED_EXIT_STATUS
from spec_coordinator.domain.models import Role, ToolName
from spec_coordinator.tools.definitions import STDIN_THRESHOLD, Invocation, build_invocation
from spec_coordinator.tools.sandbox import SandboxSettings, wrap_invocation

if TYPE_CHECKING:
    from spec_coordinator.orchestration.context import RunContext

TIMEOUT_EXIT_CODE: Final[int] = 124
SPAWN_FAILURE_EXIT_CODE: Final[int] = 127
_READ_CHUNK: Final[int] = 8192

_FLAG_REJECTION_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(?:unknown|unrecognized|unrecognised|unexpected|invalid)\s+"
    r"(?:option|argument|flag|arguments|options)\b"
    r"|\bno such option\b"
    r"|\bunexpected argument\b"
)


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Normalized outcome of one agent invocation."""

    output: str
    exit_code: int
    duration_ms: int
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class ToolRunner(Protocol):
    """Contract the orchestrator relies on; fakes implement it in tests."""

    async def run_lead(
        self, tool: ToolName, prompt: str, cwd: Path, timeout_seconds: float
    ) -> ExecutionResult: ...

    async def run_validator(
        self, tool: ToolName, prompt: str, cwd: Path, timeout_seconds: float
    ) -> ExecutionResult: ...


def looks_like_flag_rejection(output: str) -> bool:
    """True when a CLI's output says it refused one of its arguments."""
    return bool(_FLAG_REJECTION_PATTERN.search(output))


class ProcessToolRunner:
    """Spawn agent CLIs with role-specific argument profiles."""

    def __init__(
        self,
        *,
        context: RunContext | None = None,
        lead_permissions: Sequence[str] = (),
        sandbox: SandboxSettings | None = None,
        interactive: bool = False,
        stdin_threshold: int = STDIN_THRESHOLD,
        logger: Any | None = None,
    ) -> None:
        self._context = context
        self._lead_permissions = tuple(lead_permissions)
        self._sandbox = sandbox or SandboxSettings()
        self._interactive = interactive
        self._stdin_threshold = stdin_threshold
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def run_lead(
        self, tool: ToolName, prompt: str, cwd: Path, timeout_seconds: float
    ) -> ExecutionResult:
        invocation = build_invocation(
            tool,
            Role.LEAD,
            prompt,
            lead_permissions=self._lead_permissions,
            interactive=self._interactive,
            stdin_threshold=self._stdin_threshold,
        )
        return await self._execute(tool, Role.LEAD, invocation, cwd, timeout_seconds)

    async def run_validator(
        self, tool: ToolName, prompt: str, cwd: Path, timeout_seconds: float
    ) -> ExecutionResult:
        invocation = build_invocation(
            tool,
            Role.VALIDATOR,
            prompt,
            interactive=self._interactive,
            stdin_threshold=self._stdin_threshold,
        )
        result = await self._execute(tool, Role.VALIDATOR, invocation, cwd, timeout_seconds)
        if (
            self._interactive
            or result.exit_code == 0
            or result.timed_out
            or not looks_like_flag_rejection(result.output)
        ):
            return result
        if self._context is not None and self._context.interrupted:
            return result

        self._logger.warning(
            "validator_read_only_rejected",
            tool=tool.value,
            detail=(
                f"Validator {tool.value} did not accept read-only flags; "
                "falling back to full permissions."
            ),
        )
        fallback = build_invocation(
            tool,
            Role.VALIDATOR,
            prompt,
            full_permissions=True,
            stdin_threshold=self._stdin_threshold,
        )
        return await self._execute(tool, Role.VALIDATOR, fallback, cwd, timeout_seconds)

    async def _execute(
        self,
        tool: ToolName,
        role: Role,
        invocation: Invocation,
        cwd: Path,
        timeout_seconds: float,
    ) -> ExecutionResult:
        context = self._context
        for warning in invocation.warnings:
            self._logger.warning("tool_profile_warning", tool=tool.value, detail=warning)
        if context is not None and context.interrupted:
            return ExecutionResult("Interrupted before start.", INTERRUPTED_EXIT_STATUS, 0)
        if context is not None:
            await context.throttle()
            if context.interrupted:
                return ExecutionResult("Interrupted before start.", INTERRUPTED_EXIT_STATUS, 0)

        invocation = wrap_invocation(invocation, cwd, self._sandbox)
        stdin_data = (
            invocation.stdin_text.encode("utf-8") if invocation.stdin_text is not None else None
        )
        if stdin_data is not None:
            stdin_mode: int | None = asyncio.subprocess.PIPE
        elif invocation.inherit_stdin:
            stdin_mode = None
        else:
            # Agents must never block waiting on the terminal.
            stdin_mode = asyncio.subprocess.DEVNULL

        self._logger.info(
            "tool_invocation_started",
            tool=tool.value,
            role=role.value,
            command=invocation.command,
            prompt_chars=len(invocation.stdin_text or "") or None,
            timeout_seconds=timeout_seconds,
        )
        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *invocation.argv,
                stdin=stdin_mode,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd),
            )
        except OSError as exc:
            self._logger.error("tool_spawn_failed", tool=tool.value, role=role.value, error=str(exc))
            return ExecutionResult(str(exc), SPAWN_FAILURE_EXIT_CODE, _elapsed_ms(started))

        stdout_chunks: list[bytes] = []
        stderr_chunks: list[bytes] = []

        async def _feed_stdin() -> None:
            if stdin_data is None or proc.stdin is None:
                return
            # The child may exit before reading its prompt; its exit code says why.
            with suppress(BrokenPipeError, ConnectionResetError):
                proc.stdin.write(stdin_data)
                await proc.stdin.drain()
            with suppress(BrokenPipeError, ConnectionResetError):
                proc.stdin.close()

        async def _read_stdout() -> None:
            assert proc.stdout is not None  # noqa: S101
            while True:
                chunk = await proc.stdout.read(_READ_CHUNK)
                if not chunk:
                    break
                stdout_chunks.append(chunk)

        async def _read_stderr() -> None:
            assert proc.stderr is not None  # noqa: S101
            while True:
                chunk = await proc.stderr.read(_READ_CHUNK)
                if not chunk:
                    break
                stderr_chunks.append(chunk)

        if context is not None:
            context.register_process(proc)
            heartbeat = context.start_heartbeat(tool=tool.value, role=role.value)
        else:
            heartbeat = None
        timed_out = False
        try:
            await asyncio.wait_for(
                asyncio.gather(_feed_stdin(), _read_stdout(), _read_stderr()),
                timeout=timeout_seconds,
            )
            await proc.wait()
        except TimeoutError:
            timed_out = True
            with suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
        finally:
            if proc.returncode is None:
                with suppress(ProcessLookupError):
                    proc.kill()
            if heartbeat is not None:
                heartbeat.cancel()
            if context is not None:
                context.release_process(proc)

        output = _combine_output(
            b"".join(stdout_chunks).decode("utf-8", errors="replace"),
            b"".join(stderr_chunks).decode("utf-8", errors="replace"),
        )
        duration_ms = _elapsed_ms(started)
        if timed_out:
            note = f"[{tool.value} timed out after {timeout_seconds:g}s]"
            output = f"{output}\n{note}" if output else note
            exit_code = TIMEOUT_EXIT_CODE
        else:
            exit_code = proc.returncode or 0

        self._logger.info(
            "tool_invocation_finished",
            tool=tool.value,
            role=role.value,
            exit_code=exit_code,
            duration_ms=duration_ms,
            timed_out=timed_out,
            output_chars=len(output),
        )
        return ExecutionResult(output, exit_code, duration_ms, timed_out=timed_out)


def _combine_output(stdout: str, stderr: str) -> str:
    return "\n".join(part for part in (stdout, stderr) if part)


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.monotonic() - started) * 1000))


__all__ = [
    "ExecutionResult",
    "ProcessToolRunner",
    "SPAWN_FAILURE_EXIT_CODE",
    "TIMEOUT_EXIT_CODE",
    "ToolRunner",
    "looks_like_flag_rejection",
]
