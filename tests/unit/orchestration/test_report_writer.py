"""Unit tests for cycle transcripts, summaries and state cleanup."""

from __future__ import annotations

import json
import os
import time
from pathlib import Path

import pytest
from support import write_spec

from spec_coordinator.domain.models import (
    SessionConfig,
    SpecStatus,
    ToolName,
    Validation,
    ValidationResult,
    VerdictStatus,
)
from spec_coordinator.orchestration.reports import ReportWriter, clean_state, safe_spec_name
from spec_coordinator.orchestration.session import SessionStore
from spec_coordinator.specs.discovery import load_specs


def _validation(tool: ToolName = ToolName.CODEX) -> Validation:
    return Validation(
        tool=tool,
        prompt="validate",
        output='{"raw": true}',
        result=ValidationResult(
            completeness=65,
            status=VerdictStatus.FAIL,
            gaps=("No tests",),
            recommendations=("Write tests",),
        ),
        duration_ms=7,
        exit_code=0,
    )


@pytest.fixture
def store(project_dir: Path) -> SessionStore:
    write_spec(project_dir, "user-auth.md", spec_id="User Auth")
    return SessionStore(project_dir)


@pytest.mark.unit
def test_safe_spec_name() -> None:
    assert safe_spec_name("User Auth/v2") == "user_auth_v2"
    assert safe_spec_name("api-core_1") == "api-core_1"


@pytest.mark.unit
def test_report_names_are_keyed_by_session_spec_cycle_and_tool(store: SessionStore) -> None:
    writer = ReportWriter(store.paths, "ses-X")

    lead = writer.write_lead_report("User Auth", 2, ToolName.CLAUDE, "")
    validator = writer.write_validator_report("User Auth", 2, _validation())

    assert lead.name == "ses-X-user_auth-cycle-2-claude-lead.md"
    assert lead.read_text(encoding="utf-8") == "No output captured."
    assert validator.name == "ses-X-user_auth-cycle-2-codex.md"
    text = validator.read_text(encoding="utf-8")
    assert "COMPLETENESS: 65%" in text
    assert "STATUS: FAIL" in text
    assert "- No tests" in text
    assert "- Write tests" in text
    assert '{"raw": true}' in text


@pytest.mark.unit
def test_previous_reports_only_lists_existing_files(store: SessionStore) -> None:
    writer = ReportWriter(store.paths, "ses-X")
    writer.write_validator_report("User Auth", 1, _validation(ToolName.CODEX))

    previous = writer.previous_validator_reports(
        "User Auth", 1, [ToolName.CODEX, ToolName.GEMINI]
    )

    assert [Path(item).name for item in previous] == ["ses-X-user_auth-cycle-1-codex.md"]
    assert writer.previous_validator_reports("User Auth", 0, [ToolName.CODEX]) == []


@pytest.mark.unit
def test_recent_excerpts_newest_first_and_truncated(store: SessionStore) -> None:
    writer = ReportWriter(store.paths, "ses-X")
    old = writer.write_lead_report("a", 1, ToolName.CLAUDE, "old output")
    new = writer.write_lead_report("a", 2, ToolName.CLAUDE, "x" * 50)
    other = ReportWriter(store.paths, "ses-Y").write_lead_report("a", 1, ToolName.CLAUDE, "y")
    stamp = time.time()
    os.utime(old, (stamp - 100, stamp - 100))
    os.utime(new, (stamp, stamp))

    excerpts = writer.recent_excerpts(limit=5, max_chars=10)

    assert [item.name for item in excerpts] == [new.name, old.name]
    assert excerpts[0].text == "x" * 10 + "\n[truncated]"
    assert other.name not in {item.name for item in excerpts}
    assert writer.recent_excerpts(limit=0, max_chars=10) == []


@pytest.mark.unit
def test_summary_reflects_session_state(store: SessionStore, project_dir: Path) -> None:
    entries = [spec.to_entry() for spec in load_specs(project_dir)]
    session = store.create(entries, ToolName.CLAUDE, [ToolName.CODEX], SessionConfig())
    session.specs[0].transition(SpecStatus.IN_PROGRESS)
    session.specs[0].transition(SpecStatus.FAILED, error="boom")
    writer = ReportWriter(store.paths, session.id)

    path = writer.write_summary(session)

    summary = json.loads(path.read_text(encoding="utf-8"))
    assert summary["session_id"] == session.id
    assert summary["status"] == "in_progress"
    assert summary["specs"] == [
        {
            "file": "user-auth.md",
            "id": "User Auth",
            "status": "failed",
            "context_only": False,
            "cycles": 0,
            "consensus": False,
            "last_verdicts": {},
            "last_error": "boom",
        }
    ]


@pytest.mark.unit
def test_clean_state_keeps_pointer_and_active_session(store: SessionStore) -> None:
    session = store.create([], ToolName.CLAUDE, [ToolName.CODEX], SessionConfig())
    writer = ReportWriter(store.paths, session.id)
    stale = writer.write_lead_report("a", 1, ToolName.CLAUDE, "old")
    fresh = writer.write_lead_report("a", 2, ToolName.CLAUDE, "new")
    now = time.time()
    ancient = now - 40 * 86_400
    for path in (stale, store.paths.pointer_file, store.paths.session_file(session.id)):
        os.utime(path, (ancient, ancient))

    removed = clean_state(store.paths, max_age_days=30, active_session_id=session.id, now=now)

    assert removed == [stale]
    assert fresh.exists()
    assert store.paths.pointer_file.exists()
    assert store.paths.session_file(session.id).exists()
