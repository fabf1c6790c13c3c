"""Per-cycle transcripts, the session summary record, and state cleanup."""

from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Final

from spec_coordinator.domain.models import JSONValue, Session, ToolName, Validation
from spec_coordinator.orchestration.prompts import ReportExcerpt
from spec_coordinator.orchestration.session import StatePaths
from spec_coordinator.utils.fs import atomic_write, atomic_write_json, prune_older_than

DEFAULT_MAX_AGE_DAYS: Final[int] = 30
_UNSAFE_NAME_CHARS: Final[re.Pattern[str]] = re.compile(r"[^a-z0-9_-]")
_NO_OUTPUT: Final[str] = "No output captured."


def safe_spec_name(spec_id: str) -> str:
    return _UNSAFE_NAME_CHARS.sub("_", spec_id.lower())


class ReportWriter:
    """Writes transcripts keyed by session, spec, cycle number and tool."""

    def __init__(self, paths: StatePaths, session_id: str) -> None:
        self._paths = paths
        self._session_id = session_id

    @property
    def reports_dir(self) -> Path:
        return self._paths.reports_dir

    def validator_report_path(self, spec_id: str, cycle: int, tool: ToolName) -> Path:
        name = f"{self._session_id}-{safe_spec_name(spec_id)}-cycle-{cycle}-{tool.value}.md"
        return self.reports_dir / name

    def lead_report_path(self, spec_id: str, cycle: int, tool: ToolName) -> Path:
        name = f"{self._session_id}-{safe_spec_name(spec_id)}-cycle-{cycle}-{tool.value}-lead.md"
        return self.reports_dir / name

    def summary_path(self) -> Path:
        return self.reports_dir / f"{self._session_id}-summary.json"

    def write_lead_report(self, spec_id: str, cycle: int, tool: ToolName, output: str) -> Path:
        path = self.lead_report_path(spec_id, cycle, tool)
        atomic_write(path, output or _NO_OUTPUT)
        return path

    def write_validator_report(self, spec_id: str, cycle: int, validation: Validation) -> Path:
        result = validation.result
        lines = [
            f"# {validation.tool.value} validation of {spec_id} (cycle {cycle})",
            "",
            f"COMPLETENESS: {result.completeness}%",
            f"STATUS: {result.status.value}",
            f"EXIT CODE: {validation.exit_code}",
            "GAPS:",
            *(f"- {gap}" for gap in result.gaps),
            "RECOMMENDATIONS:",
            *(f"- {item}" for item in result.recommendations),
            "",
            "## Raw output",
            "",
            validation.output or _NO_OUTPUT,
        ]
        path = self.validator_report_path(spec_id, cycle, validation.tool)
        atomic_write(path, "\n".join(lines) + "\n")
        return path

    def previous_validator_reports(
        self, spec_id: str, cycle: int, validators: Sequence[ToolName]
    ) -> list[str]:
        if cycle < 1:
            return []
        return [
            str(path)
            for path in (self.validator_report_path(spec_id, cycle, tool) for tool in validators)
            if path.is_file()
        ]

    def recent_excerpts(self, *, limit: int, max_chars: int) -> list[ReportExcerpt]:
        """Most recent transcripts of this session, newest first, truncated."""

        if limit <= 0 or not self.reports_dir.is_dir():
            return []
        candidates = [
            path
            for path in self.reports_dir.glob(f"{self._session_id}-*.md")
            if path.is_file()
        ]
        candidates.sort(key=lambda path: (path.stat().st_mtime, path.name), reverse=True)
        excerpts: list[ReportExcerpt] = []
        for path in candidates[:limit]:
            text = path.read_text(encoding="utf-8", errors="replace")
            if len(text) > max_chars:
                text = text[:max_chars] + "\n[truncated]"
            excerpts.append(ReportExcerpt(name=path.name, text=text))
        return excerpts

    def write_summary(self, session: Session) -> Path:
        path = self.summary_path()
        atomic_write_json(path, build_summary(session))
        return path


def build_summary(session: Session) -> dict[str, JSONValue]:
    specs: list[JSONValue] = []
    for spec in session.specs:
        last_cycle = spec.cycles[-1] if spec.cycles else None
        verdicts: dict[str, JSONValue] = {}
        if last_cycle is not None:
            for validation in last_cycle.validations:
                verdicts[validation.tool.value] = {
                    "status": validation.result.status.value,
                    "completeness": validation.result.completeness,
                    "gaps": len(validation.result.gaps),
                }
        specs.append(
            {
                "file": spec.file,
                "id": spec.id,
                "status": spec.status.value,
                "context_only": spec.context_only,
                "cycles": len(spec.cycles),
                "consensus": bool(last_cycle and last_cycle.consensus_reached),
                "last_verdicts": verdicts,
                "last_error": spec.last_error,
            }
        )
    return {
        "session_id": session.id,
        "mode": session.mode.value,
        "status": session.status.value,
        "lead": session.lead.value,
        "validators": [tool.value for tool in session.validators],
        "current_spec_index": session.current_spec_index,
        "created_at": _iso(session.created_at),
        "updated_at": _iso(session.updated_at),
        "specs": specs,
    }


def _iso(value: datetime) -> str:
    return value.isoformat(timespec="seconds").replace("+00:00", "Z")


def clean_state(
    paths: StatePaths,
    *,
    max_age_days: float = DEFAULT_MAX_AGE_DAYS,
    active_session_id: str | None = None,
    now: float | None = None,
) -> list[Path]:
    """Delete reports, logs and session snapshots older than ``max_age_days``."""

    keep: list[Path] = [paths.pointer_file]
    if active_session_id is not None:
        keep.append(paths.session_file(active_session_id))
    return prune_older_than(
        (paths.reports_dir, paths.logs_dir, paths.sessions_dir),
        max_age_seconds=max_age_days * 86_400,
        keep=[path for path in keep if path.exists()],
        now=now,
    )


__all__ = [
    "DEFAULT_MAX_AGE_DAYS",
    "ReportWriter",
    "build_summary",
    "clean_state",
    "safe_spec_name",
]
