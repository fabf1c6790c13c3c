"""Test helpers: a scripted agent runner and spec-file builders."""

from __future__ import annotations

import json
from collections import deque
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from spec_coordinator.domain.models import Role, ToolName
from spec_coordinator.tools.runner import ExecutionResult


def verdict_json(
    status: str,
    completeness: int = 90,
    *,
    findings: Sequence[object] = (),
    recommendations: Sequence[str] = (),
) -> str:
    """Validator output carrying a bare JSON verdict."""

    return json.dumps(
        {
            "completeness": completeness,
            "status": status,
            "findings": list(findings),
            "recommendations": list(recommendations),
        }
    )


def passing(completeness: int = 95) -> ExecutionResult:
    return ExecutionResult(verdict_json("PASS", completeness), 0, 10)


def failing(completeness: int = 40, gap: str = "Missing error handling") -> ExecutionResult:
    return ExecutionResult(
        verdict_json("FAIL", completeness, findings=[gap], recommendations=["Add it"]), 0, 10
    )


def lead_ok(text: str = "Implemented the requested changes.") -> ExecutionResult:
    return ExecutionResult(text, 0, 25)


def write_spec(
    root: Path,
    file_name: str,
    *,
    spec_id: str | None = None,
    name: str | None = None,
    complexity: str = "MODERATE",
    maturity: int = 4,
    depends_on: Iterable[str] = (),
    body: str = "## Requirements\n\n- Do the thing.\n",
) -> Path:
    """Write ``root/specs/<file_name>`` with valid front matter."""

    stem = file_name.removesuffix(".md")
    lines = [
        "---",
        "specmas: v3",
        "kind: feature",
        f"id: {spec_id or stem}",
        f"name: {name or stem.replace('-', ' ').title()}",
        f"complexity: {complexity}",
        f"maturity: {maturity}",
    ]
    deps = list(depends_on)
    if deps:
        lines.append("depends_on:")
        lines.extend(f"  - {dep}" for dep in deps)
    lines.append("---")
    specs_dir = root / "specs"
    specs_dir.mkdir(parents=True, exist_ok=True)
    path = specs_dir / file_name
    path.write_text("\n".join(lines) + "\n\n" + body, encoding="utf-8")
    return path


@dataclass(slots=True)
class RunnerCall:
    role: Role
    tool: ToolName
    prompt: str


@dataclass
class ScriptedRunner:
    """In-memory :class:`ToolRunner` answering from per-tool queues.

    ``on_call`` runs before each answer is returned; tests use it to simulate
    an interrupt arriving while an agent is working.
    """

    lead: dict[ToolName, deque[ExecutionResult]] = field(default_factory=dict)
    validators: dict[ToolName, deque[ExecutionResult]] = field(default_factory=dict)
    calls: list[RunnerCall] = field(default_factory=list)
    on_call: Callable[[RunnerCall], None] | None = None

    def script_lead(self, tool: ToolName, *results: ExecutionResult) -> ScriptedRunner:
        self.lead.setdefault(tool, deque()).extend(results)
        return self

    def script_validator(self, tool: ToolName, *results: ExecutionResult) -> ScriptedRunner:
        self.validators.setdefault(tool, deque()).extend(results)
        return self

    def calls_for(self, role: Role) -> list[RunnerCall]:
        return [call for call in self.calls if call.role is role]

    async def run_lead(
        self, tool: ToolName, prompt: str, cwd: Path, timeout_seconds: float
    ) -> ExecutionResult:
        return self._answer(Role.LEAD, tool, prompt, self.lead)

    async def run_validator(
        self, tool: ToolName, prompt: str, cwd: Path, timeout_seconds: float
    ) -> ExecutionResult:
        return self._answer(Role.VALIDATOR, tool, prompt, self.validators)

    def _answer(
        self,
        role: Role,
        tool: ToolName,
        prompt: str,
        queues: dict[ToolName, deque[ExecutionResult]],
    ) -> ExecutionResult:
        call = RunnerCall(role=role, tool=tool, prompt=prompt)
        self.calls.append(call)
        if self.on_call is not None:
            self.on_call(call)
        queue = queues.get(tool)
        if not queue:
            raise AssertionError(f"no scripted {role.value} answer left for {tool.value}")
        return queue.popleft()


