"""Unit tests for the subprocess-backed agent runner.

Most tests patch ``asyncio.create_subprocess_exec`` with mock processes. The
stream-handling tests put a small Python script named after the agent on
``PATH`` and run it for real.
"""

from __future__ import annotations

import asyncio
import sys
import textwrap
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from spec_coordinator.domain.models import ToolName
from spec_coordinator.orchestration.context import RunContext
from spec_coordinator.tools.runner import (
    SPAWN_FAILURE_EXIT_CODE,
    TIMEOUT_EXIT_CODE,
    ProcessToolRunner,
    looks_like_flag_rejection,
)


def _proc(stdout: list[bytes], stderr: list[bytes] | None = None, returncode: int = 0) -> MagicMock:
    proc = MagicMock()
    proc.stdout.read = AsyncMock(side_effect=[*stdout, b""])
    proc.stderr.read = AsyncMock(side_effect=[*(stderr or []), b""])
    proc.wait = AsyncMock(return_value=returncode)
    proc.returncode = returncode
    proc.stdin = None
    return proc


def _hanging_proc() -> MagicMock:
    proc = MagicMock()

    async def never(_size: int) -> bytes:
        await asyncio.sleep(3600)
        return b""

    proc.stdout.read = never
    proc.stderr.read = AsyncMock(return_value=b"")
    proc.returncode = None

    async def wait() -> int:
        proc.returncode = -9
        return -9

    proc.wait = wait
    proc.stdin = None
    return proc


@pytest.mark.unit
@pytest.mark.asyncio
async def test_output_combines_stdout_and_stderr(tmp_path: Path) -> None:
    proc = _proc([b"hello ", b"world"], [b"warn\n"])
    runner = ProcessToolRunner()

    with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as spawn:
        result = await runner.run_lead(ToolName.CLAUDE, "do it", tmp_path, 30)

    assert result.output == "hello world\nwarn\n"
    assert result.exit_code == 0
    assert result.timed_out is False
    argv = spawn.call_args.args
    assert argv[0] == "claude"
    assert argv[-1] == "do it"
    assert spawn.call_args.kwargs["cwd"] == str(tmp_path)
    assert spawn.call_args.kwargs["stdin"] == asyncio.subprocess.DEVNULL


@pytest.mark.unit
@pytest.mark.asyncio
async def test_nonzero_exit_is_reported(tmp_path: Path) -> None:
    proc = _proc([b"boom"], returncode=2)

    with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
        result = await ProcessToolRunner().run_lead(ToolName.CODEX, "go", tmp_path, 30)

    assert result.exit_code == 2
    assert not result.succeeded


@pytest.mark.unit
@pytest.mark.asyncio
async def test_timeout_kills_process_and_returns_124(tmp_path: Path) -> None:
    proc = _hanging_proc()

    with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
        result = await ProcessToolRunner().run_validator(ToolName.GEMINI, "go", tmp_path, 0.05)

    proc.kill.assert_called_once()
    assert result.exit_code == TIMEOUT_EXIT_CODE
    assert result.timed_out is True
    assert "[gemini timed out after 0.05s]" in result.output


@pytest.mark.unit
@pytest.mark.asyncio
async def test_spawn_failure_returns_127(tmp_path: Path) -> None:
    spawn = AsyncMock(side_effect=FileNotFoundError("No such file: 'claude'"))

    with patch("asyncio.create_subprocess_exec", spawn):
        result = await ProcessToolRunner().run_lead(ToolName.CLAUDE, "go", tmp_path, 30)

    assert result.exit_code == SPAWN_FAILURE_EXIT_CODE
    assert "No such file" in result.output


@pytest.mark.unit
@pytest.mark.asyncio
async def test_long_prompt_is_written_to_stdin(tmp_path: Path) -> None:
    proc = _proc([b"ok"])
    proc.stdin = MagicMock()
    proc.stdin.drain = AsyncMock()
    runner = ProcessToolRunner(stdin_threshold=5)

    with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as spawn:
        await runner.run_lead(ToolName.CODEX, "a long prompt", tmp_path, 30)

    assert spawn.call_args.args[-1] == "-"
    assert spawn.call_args.kwargs["stdin"] == asyncio.subprocess.PIPE
    proc.stdin.write.assert_called_once_with(b"a long prompt")
    proc.stdin.close.assert_called_once()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_rejected_read_only_flags_fall_back_to_full_permissions(tmp_path: Path) -> None:
    rejected = _proc([b"error: unknown option '--allowed-tools'"], returncode=2)
    accepted = _proc([b'{"status": "PASS"}'])
    spawn = AsyncMock(side_effect=[rejected, accepted])

    with patch("asyncio.create_subprocess_exec", spawn):
        result = await ProcessToolRunner().run_validator(ToolName.GEMINI, "go", tmp_path, 30)

    assert result.exit_code == 0
    assert spawn.call_count == 2
    assert "--allowed-tools" in spawn.call_args_list[0].args
    assert "--allowed-tools" not in spawn.call_args_list[1].args


@pytest.mark.unit
@pytest.mark.asyncio
async def test_other_validator_failures_are_not_retried(tmp_path: Path) -> None:
    spawn = AsyncMock(return_value=_proc([b"network unreachable"], returncode=1))

    with patch("asyncio.create_subprocess_exec", spawn):
        result = await ProcessToolRunner().run_validator(ToolName.GEMINI, "go", tmp_path, 30)

    assert result.exit_code == 1
    assert spawn.call_count == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_interrupted_context_never_spawns(tmp_path: Path) -> None:
    context = RunContext()
    context.request_interrupt()
    spawn = AsyncMock()

    with patch("asyncio.create_subprocess_exec", spawn):
        result = await ProcessToolRunner(context=context).run_lead(
            ToolName.CLAUDE, "go", tmp_path, 30
        )

    spawn.assert_not_called()
    assert result.exit_code == 130
    assert result.output == "Interrupted before start."
    await context.teardown()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_context_tracks_process_while_running(tmp_path: Path) -> None:
    context = RunContext()
    proc = _proc([b"done"])
    seen: list[int] = []
    original = proc.wait

    async def wait() -> int:
        seen.append(context.active_processes)
        return await original()

    proc.returncode = None
    proc.wait = AsyncMock(side_effect=wait)

    with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
        await ProcessToolRunner(context=context).run_lead(ToolName.CLAUDE, "go", tmp_path, 30)

    assert seen == [1]
    assert context.active_processes == 0


@pytest.mark.unit
@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("error: unknown option '--allowedTools'", True),
        ("Unrecognized arguments: --json", True),
        ("no such option: --color", True),
        ("Tests failed: 3 errors", False),
    ],
)
def test_flag_rejection_detection(output: str, expected: bool) -> None:
    assert looks_like_flag_rejection(output) is expected


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unexpected_stream_error_kills_child_and_releases_it(tmp_path: Path) -> None:
    context = RunContext()
    proc = _proc([b"partial"])
    proc.returncode = None
    proc.stderr.read = AsyncMock(side_effect=RuntimeError("stream broke"))

    with (
        patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)),
        pytest.raises(RuntimeError, match="stream broke"),
    ):
        await ProcessToolRunner(context=context).run_lead(ToolName.CLAUDE, "go", tmp_path, 30)

    proc.kill.assert_called_once()
    assert context.active_processes == 0
    await context.teardown()


def _install_fake_agent(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, name: str, body: str
) -> Path:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)
    script = bin_dir / name
    script.write_text(f"#!{sys.executable}\n{textwrap.dedent(body)}", encoding="utf-8")
    script.chmod(0o755)
    monkeypatch.setenv("PATH", f"{bin_dir}:{Path(sys.executable).parent}")
    workdir = tmp_path / "work"
    workdir.mkdir(exist_ok=True)
    return workdir


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.skipif(sys.platform == "win32", reason="relies on executable shebang scripts")
async def test_stderr_line_longer_than_stream_limit_is_captured(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    workdir = _install_fake_agent(
        tmp_path,
        monkeypatch,
        "claude",
        """
        import sys
        sys.stderr.write("E" * 200000 + "\\n")
        sys.stderr.flush()
        print("lead done")
        """,
    )

    result = await ProcessToolRunner().run_lead(ToolName.CLAUDE, "do it", workdir, 30)

    assert result.exit_code == 0
    assert "lead done" in result.output
    assert result.output.count("E") == 200_000


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.skipif(sys.platform == "win32", reason="relies on executable shebang scripts")
async def test_agent_exiting_before_reading_stdin_prompt_reports_its_exit_code(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    workdir = _install_fake_agent(
        tmp_path,
        monkeypatch,
        "claude",
        """
        import sys
        sys.stderr.write("auth failure\\n")
        sys.exit(1)
        """,
    )
    context = RunContext()

    result = await ProcessToolRunner(context=context).run_lead(
        ToolName.CLAUDE, "x" * 2_000_000, workdir, 30
    )

    assert result.exit_code == 1
    assert "auth failure" in result.output
    assert context.active_processes == 0
    await context.teardown()
