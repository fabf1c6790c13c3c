"""Exception taxonomy for coordinator runs.

Only :class:`PreconditionError` and :class:`LeadExecutionError` subclasses are
allowed to terminate a run; everything else is recorded on the session and
the run continues.
"""

from __future__ import annotations

from collections.abc import Sequence

from spec_coordinator.domain.models import ToolName


class CoordinatorError(RuntimeError):
    """Base class for coordinator failures surfaced to the CLI."""


class PreconditionError(CoordinatorError):
    """Startup condition not met; raised before any agent is invoked."""


class NoToolsAvailableError(PreconditionError):
    def __init__(self) -> None:
        super().__init__(
            "No AI tools detected. Install at least two of: "
            + ", ".join(tool.value for tool in ToolName)
        )


class RoleAssignmentError(PreconditionError):
    """Lead/validator roles cannot satisfy the assignment invariants."""


class SandboxUnavailableError(PreconditionError):
    """Sandboxing was requested but no container runtime is usable."""


class SpecDiscoveryError(PreconditionError):
    """A spec file carries front matter that cannot be used."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class NothingToResumeError(PreconditionError):
    def __init__(self, working_directory: str) -> None:
        super().__init__(f"No session to resume in {working_directory}.")
        self.working_directory = working_directory


class LeadExecutionError(CoordinatorError):
    """The lead agent failed in a way that aborts the run."""

    def __init__(self, message: str, *, tool: ToolName, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.tool = tool
        self.exit_code = exit_code


class EmptyLeadOutputError(LeadExecutionError):
    def __init__(self, tool: ToolName, exit_code: int) -> None:
        super().__init__(
            f"Lead tool {tool.value} returned no output. Exit code: {exit_code}. "
            "Possible causes: authentication required, the CLI waiting for input, "
            "or the agent hanging before producing a response.",
            tool=tool,
            exit_code=exit_code,
        )


class LeadRateLimitError(CoordinatorError):
    """The lead reported a provider quota; triggers fallback to the next tool."""

    def __init__(self, tool: ToolName, excerpt: str) -> None:
        super().__init__(f"Lead tool {tool.value} hit a rate limit: {excerpt}")
        self.tool = tool
        self.excerpt = excerpt


class FallbackExhaustedError(LeadExecutionError):
    def __init__(self, attempted: Sequence[ToolName]) -> None:
        names = ", ".join(tool.value for tool in attempted)
        super().__init__(
            f"All lead tools are rate limited ({names}). Wait for quotas to reset and resume.",
            tool=attempted[-1],
        )
        self.attempted = tuple(attempted)


class ValidationParseError(ValueError):
    """Validator output did not contain a usable verdict."""


__all__ = [
    "CoordinatorError",
    "EmptyLeadOutputError",
    "FallbackExhaustedError",
    "LeadExecutionError",
    "LeadRateLimitError",
    "NoToolsAvailableError",
    "NothingToResumeError",
    "PreconditionError",
    "RoleAssignmentError",
    "SandboxUnavailableError",
    "SpecDiscoveryError",
    "ValidationParseError",
]
