"""Unit tests for per-tool invocation profiles and sandbox wrapping."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from spec_coordinator.domain.models import Role, ToolName
from spec_coordinator.errors import SandboxUnavailableError
from spec_coordinator.tools.definitions import (
    READ_ONLY_TOOLS,
    build_invocation,
    profile_for,
)
from spec_coordinator.tools.sandbox import (
    SandboxBackend,
    SandboxSettings,
    ensure_sandbox_available,
    wrap_invocation,
)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("tool", "role", "expected"),
    [
        (
            ToolName.CLAUDE,
            Role.LEAD,
            ("claude", "--dangerously-skip-permissions", "-p", "--output-format", "json", "go"),
        ),
        (
            ToolName.CLAUDE,
            Role.VALIDATOR,
            ("claude", "--allowedTools", READ_ONLY_TOOLS, "-p", "--output-format", "json", "go"),
        ),
        (
            ToolName.CODEX,
            Role.LEAD,
            ("codex", "exec", "--color", "never", "--full-auto", "--json", "go"),
        ),
        (ToolName.CODEX, Role.VALIDATOR, ("codex", "exec", "--color", "never", "--json", "go")),
        (ToolName.GEMINI, Role.LEAD, ("gemini", "--output-format", "json", "go")),
        (
            ToolName.GEMINI,
            Role.VALIDATOR,
            ("gemini", "--output-format", "json", "--allowed-tools", READ_ONLY_TOOLS, "go"),
        ),
    ],
)
def test_role_profiles(tool: ToolName, role: Role, expected: tuple[str, ...]) -> None:
    invocation = build_invocation(tool, role, "go")

    assert invocation.argv == expected
    assert invocation.stdin_text is None
    assert invocation.inherit_stdin is False


@pytest.mark.unit
def test_long_prompts_go_through_stdin() -> None:
    prompt = "x" * 20

    invocation = build_invocation(ToolName.CODEX, Role.VALIDATOR, prompt, stdin_threshold=10)

    assert invocation.argv == ("codex", "exec", "--color", "never", "--json", "-")
    assert invocation.stdin_text == prompt


@pytest.mark.unit
def test_lead_permission_override_for_claude() -> None:
    invocation = build_invocation(
        ToolName.CLAUDE, Role.LEAD, "go", lead_permissions=["Read", "Edit"]
    )

    assert invocation.argv == ("claude", "--allowedTools", "Read,Edit", "-p", "go")
    assert invocation.warnings == ()


@pytest.mark.unit
def test_lead_permission_override_unsupported_warns() -> None:
    invocation = build_invocation(ToolName.GEMINI, Role.LEAD, "go", lead_permissions=["Read"])

    assert invocation.argv == ("gemini", "--output-format", "json", "go")
    assert len(invocation.warnings) == 1
    assert "not supported for gemini" in invocation.warnings[0]


@pytest.mark.unit
def test_full_permissions_fallback_uses_lead_profile() -> None:
    invocation = build_invocation(ToolName.GEMINI, Role.VALIDATOR, "go", full_permissions=True)

    assert invocation.argv == ("gemini", "--output-format", "json", "go")


@pytest.mark.unit
def test_interactive_mode_passes_prompt_and_inherits_stdin() -> None:
    invocation = build_invocation(ToolName.CLAUDE, Role.LEAD, "go", interactive=True)

    assert invocation.argv == ("claude", "go")
    assert invocation.inherit_stdin is True


@pytest.mark.unit
def test_unknown_tool_is_rejected() -> None:
    with pytest.raises(ValueError, match="unsupported tool"):
        profile_for("cursor")  # type: ignore[arg-type]


@pytest.mark.unit
def test_sandbox_wraps_command_in_container(tmp_path: Path) -> None:
    invocation = build_invocation(ToolName.CODEX, Role.LEAD, "x" * 20, stdin_threshold=10)
    settings = SandboxSettings(enabled=True, backend=SandboxBackend.PODMAN, image="node:22")

    wrapped = wrap_invocation(invocation, tmp_path, settings)

    assert wrapped.command == "podman"
    assert wrapped.args[:3] == ("run", "--rm", "-i")
    assert f"{tmp_path.resolve()}:/workspace" in wrapped.args
    assert wrapped.args[wrapped.args.index("node:22") + 1 :] == invocation.argv
    assert wrapped.stdin_text == invocation.stdin_text


@pytest.mark.unit
def test_disabled_sandbox_is_passthrough(tmp_path: Path) -> None:
    invocation = build_invocation(ToolName.CODEX, Role.LEAD, "go")

    assert wrap_invocation(invocation, tmp_path, SandboxSettings()) is invocation


@pytest.mark.unit
def test_sandbox_settings_validation() -> None:
    assert SandboxSettings(backend="Docker").backend is SandboxBackend.DOCKER  # type: ignore[arg-type]
    with pytest.raises(ValueError, match="unsupported sandbox backend"):
        SandboxSettings(backend="lxc")  # type: ignore[arg-type]
    with pytest.raises(ValueError, match="non-empty"):
        SandboxSettings(image=" ")


@pytest.mark.unit
def test_missing_sandbox_runtime_is_a_precondition_failure() -> None:
    with (
        patch("shutil.which", return_value=None),
        pytest.raises(SandboxUnavailableError, match="docker is not installed"),
    ):
        ensure_sandbox_available(SandboxSettings(enabled=True))
