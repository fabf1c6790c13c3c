"""
spec-coordinator - CLI command tests

Purpose
- Exercise the argparse router and command handlers against temporary
  project directories. Tool detection and the agent runner are patched; no
  agent CLI is ever spawned.
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from support import ScriptedRunner, failing, lead_ok, passing, write_spec

from spec_coordinator.domain.models import (
    InvalidTransitionError,
    Role,
    SessionStatus,
    SpecStatus,
    ToolName,
)
from spec_coordinator.errors import EmptyLeadOutputError, NothingToResumeError
from spec_coordinator.main import ExitCode, _route_exception, cli_entrypoint
from spec_coordinator.orchestration.session import SessionStore
from spec_coordinator.tools.detection import ToolRegistry
from spec_coordinator.ui.cli import EXAMPLE_SPEC_NAME, build_parser, run_cli

CLAUDE, CODEX, GEMINI = ToolName.CLAUDE, ToolName.CODEX, ToolName.GEMINI


@pytest.fixture(autouse=True)
def _hermetic_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("SPECCOORD_PROFILE", "NO_COLOR"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SPECCOORD_RUN_TEST_MODE", "true")


def _installed(*tools: ToolName) -> ToolRegistry:
    return ToolRegistry.from_names(tools)


@pytest.mark.unit
def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


@pytest.mark.unit
def test_validators_option_rejects_unknown_tools(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["run", "--validators", "codex,cursor"])

    assert "unknown tool 'cursor'" in capsys.readouterr().err


@pytest.mark.unit
def test_init_creates_example_spec_and_refuses_to_overwrite(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert run_cli(["init", "--dir", str(tmp_path)]) == 0
    example = tmp_path / "specs" / EXAMPLE_SPEC_NAME
    assert example.read_text(encoding="utf-8").startswith("---\nspecmas: v3\n")

    assert run_cli(["init", "--dir", str(tmp_path)]) == 1
    assert "already exists" in capsys.readouterr().err

    (tmp_path / "specs" / "other.md").write_text("x", encoding="utf-8")
    assert run_cli(["init", "--dir", str(tmp_path), "--force"]) == 0
    assert sorted(path.name for path in (tmp_path / "specs").iterdir()) == [EXAMPLE_SPEC_NAME]


@pytest.mark.unit
def test_missing_working_directory_is_a_usage_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert run_cli(["status", "--dir", str(tmp_path / "nope")]) == 2
    assert "not a directory" in capsys.readouterr().err


@pytest.mark.unit
def test_specs_lists_in_dependency_order(
    project_dir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    write_spec(project_dir, "a.md", spec_id="web", depends_on=["db"])
    write_spec(project_dir, "b.md", spec_id="db")

    assert run_cli(["specs", "--dir", str(project_dir)]) == 0

    out = capsys.readouterr().out
    assert out.index("db") < out.index("web")


@pytest.mark.unit
def test_specs_with_none_found(project_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["specs", "--dir", str(project_dir)]) == 0
    assert "No specs found." in capsys.readouterr().out


@pytest.mark.unit
def test_config_prints_effective_values(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    (tmp_path / "speccoord.toml").write_text("[sandbox]\nimage = \"node:22\"\n", encoding="utf-8")

    assert run_cli(["config", "--dir", str(tmp_path), "--profile", "fast"]) == 0

    out = capsys.readouterr().out
    assert "Active profile: fast" in out
    payload = json.loads(out[out.index("{") :])
    assert payload["sandbox"]["image"] == "node:22"
    assert payload["run"]["max_iterations"] == 3
    assert payload["run"]["test_mode"] is True
    assert "profiles" not in payload


@pytest.mark.unit
def test_invalid_config_exits_with_code_2(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    (tmp_path / "speccoord.toml").write_text("[run]\nloops = 1\n", encoding="utf-8")

    assert run_cli(["config", "--dir", str(tmp_path)]) == 2
    assert "run.loops: unknown field" in capsys.readouterr().err


@pytest.mark.unit
def test_status_without_session(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["status", "--dir", str(tmp_path)]) == 0
    assert "No session found." in capsys.readouterr().out


@pytest.mark.unit
def test_clean_all_removes_state_directory(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert run_cli(["clean", "--dir", str(tmp_path), "--all"]) == 0
    assert "Nothing to clean." in capsys.readouterr().out

    (tmp_path / ".spec-coord" / "reports").mkdir(parents=True)
    assert run_cli(["clean", "--dir", str(tmp_path), "--all"]) == 0
    assert not (tmp_path / ".spec-coord").exists()


@pytest.mark.unit
def test_run_requires_installed_tools(project_dir: Path) -> None:
    write_spec(project_dir, "feature.md")

    with patch("spec_coordinator.ui.cli.detect_tools", return_value=_installed()):
        assert cli_entrypoint(["run", "--dir", str(project_dir)]) == ExitCode.CONFIG_ERROR


@pytest.mark.unit
def test_run_dry_run_lists_specs_and_roles(
    project_dir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    write_spec(project_dir, "feature.md", complexity="EASY", maturity=4)

    with patch("spec_coordinator.ui.cli.detect_tools", return_value=_installed(CLAUDE, CODEX)):
        code = run_cli(["run", "--dir", str(project_dir), "--dry-run"])

    out = capsys.readouterr().out
    assert code == 0
    assert "1. feature.md (EASY, Level 4)" in out
    assert "Lead: claude" in out
    assert "Validators: codex" in out
    assert SessionStore(project_dir).load() is None


@pytest.mark.unit
def test_resume_without_session_is_a_precondition_error(project_dir: Path) -> None:
    write_spec(project_dir, "feature.md")

    with (
        patch("spec_coordinator.ui.cli.detect_tools", return_value=_installed(CLAUDE, CODEX)),
        pytest.raises(NothingToResumeError),
    ):
        run_cli(["run", "--dir", str(project_dir), "--resume"])


@pytest.mark.unit
def test_run_end_to_end_with_scripted_agents(project_dir: Path) -> None:
    write_spec(project_dir, "feature.md")
    runner = (
        ScriptedRunner()
        .script_lead(CODEX, lead_ok())
        .script_validator(CLAUDE, passing())
    )

    with (
        patch("spec_coordinator.ui.cli.detect_tools", return_value=_installed(CLAUDE, CODEX)),
        patch("spec_coordinator.ui.cli.ProcessToolRunner", return_value=runner),
    ):
        code = run_cli(
            ["run", "--dir", str(project_dir), "--lead", "codex", "--max-iterations", "2"]
        )

    assert code == 0
    sessions = SessionStore(project_dir).list_sessions()
    assert len(sessions) == 1
    session = sessions[0]
    assert session.status is SessionStatus.COMPLETED
    assert session.lead is CODEX
    assert session.config.max_iterations == 2
    assert session.config.max_iterations_per_run == 2
    log_file = project_dir / ".spec-coord" / "logs" / session.id / "coordinator.jsonl"
    events = [json.loads(line)["event"] for line in log_file.read_text().splitlines()]
    assert "run_started" in events
    assert "run_finished" in events


@pytest.mark.unit
def test_failed_run_exits_1_and_resume_picks_it_up(project_dir: Path) -> None:
    write_spec(project_dir, "feature.md")
    first = (
        ScriptedRunner()
        .script_lead(CLAUDE, lead_ok())
        .script_validator(CODEX, failing())
    )
    second = (
        ScriptedRunner()
        .script_lead(CLAUDE, lead_ok())
        .script_validator(CODEX, passing())
    )
    argv = ["run", "--dir", str(project_dir), "--max-iterations-per-run", "1"]

    with (
        patch("spec_coordinator.ui.cli.detect_tools", return_value=_installed(CLAUDE, CODEX)),
        patch("spec_coordinator.ui.cli.ProcessToolRunner", side_effect=[first, second]),
    ):
        assert run_cli(argv) == 1
        failed = SessionStore(project_dir).load()
        assert failed is not None
        assert failed.specs[0].status is SpecStatus.FAILED

        assert run_cli([*argv, "--resume"]) == 0

    sessions = SessionStore(project_dir).list_sessions()
    assert len(sessions) == 1
    assert [cycle.number for cycle in sessions[0].specs[0].cycles] == [1, 2]


@pytest.mark.unit
def test_validate_command_runs_validators_only(project_dir: Path) -> None:
    write_spec(project_dir, "feature.md")
    runner = ScriptedRunner().script_validator(CODEX, passing()).script_validator(GEMINI, failing())

    with (
        patch(
            "spec_coordinator.ui.cli.detect_tools",
            return_value=_installed(CLAUDE, CODEX, GEMINI),
        ),
        patch("spec_coordinator.ui.cli.ProcessToolRunner", return_value=runner),
    ):
        code = run_cli(["validate", "--dir", str(project_dir)])

    assert code == 1
    assert runner.calls_for(Role.LEAD) == []
    assert len(runner.calls_for(Role.VALIDATOR)) == 2
    store = SessionStore(project_dir)
    assert store.load() is None
    (session,) = store.list_sessions()
    assert session.mode.value == "validate"
    assert session.specs[0].status is SpecStatus.FAILED


@pytest.mark.unit
@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (EmptyLeadOutputError(CLAUDE, 0), ExitCode.TOOL_ERROR),
        (NothingToResumeError("/work"), ExitCode.CONFIG_ERROR),
        (FileNotFoundError("speccoord.toml"), ExitCode.CONFIG_ERROR),
        (ValueError("bad value"), ExitCode.INTERNAL_ERROR),
        (
            InvalidTransitionError("a.md", SpecStatus.COMPLETED, SpecStatus.PENDING),
            ExitCode.INTERNAL_ERROR,
        ),
        (RuntimeError("unexpected"), ExitCode.INTERNAL_ERROR),
    ],
)
def test_exception_routing(exc: Exception, expected: ExitCode) -> None:
    assert _route_exception(exc) is expected


@pytest.mark.unit
def test_exception_routing_follows_cause_chain() -> None:
    try:
        try:
            raise EmptyLeadOutputError(CODEX, 1)
        except EmptyLeadOutputError as inner:
            raise RuntimeError("wrapped") from inner
    except RuntimeError as outer:
        assert _route_exception(outer) is ExitCode.TOOL_ERROR


@pytest.mark.unit
def test_entrypoint_maps_keyboard_interrupt_to_130(capsys: pytest.CaptureFixture[str]) -> None:
    with patch("spec_coordinator.ui.cli.run_cli", side_effect=KeyboardInterrupt):
        assert cli_entrypoint(["status"]) == ExitCode.INTERRUPTED

    assert "Interrupted." in capsys.readouterr().err


@pytest.mark.unit
def test_entrypoint_reports_internal_errors_with_traceback(
    capsys: pytest.CaptureFixture[str],
) -> None:
    with patch("spec_coordinator.ui.cli.run_cli", side_effect=RuntimeError("kaboom")):
        assert cli_entrypoint(["status"]) == ExitCode.INTERNAL_ERROR

    assert "Traceback" in capsys.readouterr().err
