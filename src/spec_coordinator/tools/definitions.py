"""Static invocation profiles for every supported agent CLI.

Adding an agent is one new :class:`ToolName` member and one row in
:data:`TOOL_PROFILES`; nothing else dispatches on tool names.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Final

from spec_coordinator.domain.models import Role, ToolName

READ_ONLY_TOOLS: Final[str] = "View,Read,Grep,Glob,LS"

# Prompts longer than this are piped on stdin rather than passed as argv.
STDIN_THRESHOLD: Final[int] = 100_000

LEAD_PRIORITY: Final[tuple[ToolName, ...]] = (ToolName.CLAUDE, ToolName.CODEX, ToolName.GEMINI)


@dataclass(frozen=True, slots=True)
class ToolProfile:
    """How to invoke one agent CLI in each role."""

    name: ToolName
    command: str
    lead_args: tuple[str, ...]
    validator_args: tuple[str, ...]
    stdin_args: tuple[str, ...] = ()
    supports_permission_override: bool = False

    def args_for(self, role: Role) -> tuple[str, ...]:
        return self.lead_args if role is Role.LEAD else self.validator_args


@dataclass(frozen=True, slots=True)
class Invocation:
    """A fully resolved command line plus how the prompt reaches the process."""

    command: str
    args: tuple[str, ...]
    stdin_text: str | None = None
    inherit_stdin: bool = False
    warnings: tuple[str, ...] = field(default=(), compare=False)

    @property
    def argv(self) -> tuple[str, ...]:
        return (self.command, *self.args)


TOOL_PROFILES: Final[Mapping[ToolName, ToolProfile]] = MappingProxyType(
    {
        ToolName.CLAUDE: ToolProfile(
            name=ToolName.CLAUDE,
            command="claude",
            lead_args=("--dangerously-skip-permissions", "-p", "--output-format", "json"),
            validator_args=("--allowedTools", READ_ONLY_TOOLS, "-p", "--output-format", "json"),
            supports_permission_override=True,
        ),
        ToolName.CODEX: ToolProfile(
            name=ToolName.CODEX,
            command="codex",
            lead_args=("exec", "--color", "never", "--full-auto", "--json"),
            validator_args=("exec", "--color", "never", "--json"),
            stdin_args=("-",),
        ),
        ToolName.GEMINI: ToolProfile(
            name=ToolName.GEMINI,
            command="gemini",
            lead_args=("--output-format", "json"),
            validator_args=("--output-format", "json", "--allowed-tools", READ_ONLY_TOOLS),
        ),
    }
)


def profile_for(tool: ToolName) -> ToolProfile:
    try:
        return TOOL_PROFILES[ToolName(tool)]
    except (KeyError, ValueError) as exc:
        raise ValueError(f"unsupported tool: {tool!r}") from exc


def build_invocation(
    tool: ToolName,
    role: Role,
    prompt: str,
    *,
    lead_permissions: Sequence[str] = (),
    interactive: bool = False,
    full_permissions: bool = False,
    stdin_threshold: int = STDIN_THRESHOLD,
) -> Invocation:
    """
    Resolve the command line for ``tool`` acting as ``role``.

    ``full_permissions`` forces the lead profile for a validator; it is the
    fallback used when a tool rejects its read-only flags.
    """

    profile = profile_for(tool)
    warnings: list[str] = []

    if interactive:
        return Invocation(command=profile.command, args=(prompt,), inherit_stdin=True)

    effective_role = Role.LEAD if full_permissions else role
    args = profile.args_for(effective_role)
    if role is Role.LEAD and lead_permissions:
        if profile.supports_permission_override:
            args = ("--allowedTools", ",".join(lead_permissions), "-p")
        else:
            warnings.append(
                f"Lead permission overrides are not supported for {tool.value}; "
                "using its default lead profile."
            )

    if len(prompt) > stdin_threshold:
        return Invocation(
            command=profile.command,
            args=(*args, *profile.stdin_args),
            stdin_text=prompt,
            warnings=tuple(warnings),
        )
    return Invocation(command=profile.command, args=(*args, prompt), warnings=tuple(warnings))


__all__ = [
    "Invocation",
    "LEAD_PRIORITY",
    "READ_ONLY_TOOLS",
    "STDIN_THRESHOLD",
    "TOOL_PROFILES",
    "ToolProfile",
    "build_invocation",
    "profile_for",
]
