"""
spec-coordinator - cycle orchestrator

Purpose
- Drive every spec of a session through lead -> validators -> consensus
  cycles until it settles, persisting the session after each state change.

Per spec
1. Context-only specs are skipped without invoking anything.
2. A spec whose lifetime cycle budget is spent is skipped for manual review.
3. An optional preflight validation pass may complete the spec outright, or
   shrink this invocation's cycle allotment and seed feedback from its gaps.
4. Each cycle runs the lead (retry and rate-limit fallback), then every
   validator concurrently, then the consensus check.
5. Out of cycles: ``failed`` while lifetime budget remains, else ``skipped``.

Interrupts never record a partial cycle: the number is reused on resume.
Lead failures mark the spec failed and the session partial, persist, and
propagate.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import structlog

from spec_coordinator.domain.models import (
    Cycle,
    LeadExecution,
    Session,
    SessionMode,
    SessionStatus,
    SpecEntry,
    SpecStatus,
    ToolName,
    Validation,
    utc_now,
)
from spec_coordinator.errors import EmptyLeadOutputError, LeadExecutionError
from spec_coordinator.observability.logging import correlation_scope
from spec_coordinator.orchestration.consensus import average_completeness, has_consensus
from spec_coordinator.orchestration.context import RunContext
from spec_coordinator.orchestration.lead import run_lead_with_fallback
from spec_coordinator.orchestration.prompts import (
    PromptSettings,
    build_lead_prompt,
    build_validation_prompt,
    directory_listing,
    has_project_files,
    read_codebase,
)
from spec_coordinator.orchestration.reports import ReportWriter
from spec_coordinator.orchestration.session import SessionStore
from spec_coordinator.orchestration.validation import validate_all
from spec_coordinator.tools.roles import RoleAssignment
from spec_coordinator.tools.runner import ToolRunner

PREFLIGHT_CYCLE = 0


class _SpecOutcome(Enum):
    SETTLED = "settled"
    FAILED = "failed"
    BUDGET_SKIPPED = "budget_skipped"
    INTERRUPTED = "interrupted"


@dataclass(frozen=True, slots=True)
class OrchestratorSettings:
    prompts: PromptSettings = field(default_factory=PromptSettings)
    rate_limit_cooldown_seconds: float = 0.0


@dataclass(frozen=True, slots=True)
class RunOutcome:
    """How one orchestrator invocation ended."""

    session: Session
    interrupted: bool = False
    aborted: bool = False

    @property
    def status(self) -> SessionStatus:
        return self.session.status

    @property
    def succeeded(self) -> bool:
        return self.session.status is SessionStatus.COMPLETED and not self.interrupted


def budget_exhausted_message(spec: SpecEntry, max_iterations: int) -> str:
    return (
        f"Max total iterations reached for {spec.file} "
        f"({len(spec.cycles)}/{max_iterations}). Manual review required."
    )


def feedback_from_validations(validations: Sequence[Validation]) -> list[str]:
    """Gap and recommendation lines for the next lead prompt, tagged by validator."""

    lines: list[str] = []
    for validation in validations:
        tag = validation.tool.value
        lines.extend(f"- [{tag}] {gap}" for gap in validation.result.gaps)
        lines.extend(
            f"- [{tag}] Recommendation: {item}" for item in validation.result.recommendations
        )
    return lines


class CycleOrchestrator:
    """Runs one session to completion, failure, or interrupt."""

    def __init__(
        self,
        *,
        session: Session,
        store: SessionStore,
        runner: ToolRunner,
        available: Sequence[ToolName],
        context: RunContext | None = None,
        settings: OrchestratorSettings | None = None,
        reports: ReportWriter | None = None,
        logger: Any | None = None,
    ) -> None:
        self._session = session
        self._store = store
        self._runner = runner
        self._available = tuple(available)
        self._context = context if context is not None else RunContext()
        self._settings = settings or OrchestratorSettings()
        self._reports = reports or ReportWriter(store.paths, session.id)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._cwd = Path(session.working_directory)

    @property
    def session(self) -> Session:
        return self._session

    @property
    def reports(self) -> ReportWriter:
        return self._reports

    async def run(self) -> RunOutcome:
        """Implement every remaining spec; always tears the run context down."""

        with correlation_scope(session_id=self._session.id):
            try:
                if self._session.mode is SessionMode.VALIDATE:
                    return await self._validate_specs()
                return await self._run_specs()
            except asyncio.CancelledError:
                self._store.persist(self._session)
                raise
            finally:
                await self._context.teardown()

    async def _run_specs(self) -> RunOutcome:
        session = self._session
        self._rewind_to_failed()
        session.status = SessionStatus.IN_PROGRESS
        self._store.persist(session)
        self._logger.info(
            "run_started",
            specs=len(session.specs),
            start_index=session.current_spec_index,
            lead=session.lead.value,
            validators=[tool.value for tool in session.validators],
        )

        while session.current_spec_index < len(session.specs):
            if self._context.interrupted:
                return self._interrupted()
            index = session.current_spec_index
            spec = session.specs[index]
            with correlation_scope(spec_id=spec.id):
                outcome = await self._process_spec(spec)
            if outcome is _SpecOutcome.INTERRUPTED:
                return self._interrupted()

            stop = session.config.stop_on_failure and outcome in (
                _SpecOutcome.FAILED,
                _SpecOutcome.BUDGET_SKIPPED,
            )
            if outcome is not _SpecOutcome.FAILED or not stop:
                session.advance_to(index + 1)
            self._store.persist(session)
            if stop:
                session.status = SessionStatus.PARTIAL
                self._store.persist(session)
                self._reports.write_summary(session)
                self._logger.warning("run_stopped_on_failure", spec_file=spec.file)
                return RunOutcome(session, aborted=True)

        return self._finish()

    async def _process_spec(self, spec: SpecEntry) -> _SpecOutcome:
        config = self._session.config
        if spec.is_finished:
            return _SpecOutcome.SETTLED
        if spec.context_only:
            spec.transition(SpecStatus.SKIPPED)
            self._store.persist(self._session)
            self._logger.info("spec_skipped", spec_file=spec.file, reason="context_only")
            return _SpecOutcome.SETTLED
        if spec.status is SpecStatus.FAILED:
            spec.reopen()

        if len(spec.cycles) >= config.max_iterations:
            return self._skip_for_budget(spec)

        try:
            spec_text = self._read_spec(spec)
        except OSError as exc:
            spec.transition(SpecStatus.IN_PROGRESS)
            spec.transition(SpecStatus.FAILED, error=f"Spec file unreadable: {exc}")
            self._store.persist(self._session)
            self._logger.error("spec_unreadable", spec_file=spec.file, error=str(exc))
            return _SpecOutcome.FAILED

        spec.transition(SpecStatus.IN_PROGRESS)
        self._store.persist(self._session)
        remaining = config.max_iterations - len(spec.cycles)
        allotted = min(remaining, config.max_iterations_per_run)
        feedback = feedback_from_validations(spec.cycles[-1].validations) if spec.cycles else []
        self._logger.info(
            "spec_started",
            spec_file=spec.file,
            cycles_recorded=len(spec.cycles),
            cycles_allotted=allotted,
        )

        if config.preflight.enabled and has_project_files(self._cwd):
            preflight = await self._validate(spec, spec_text, PREFLIGHT_CYCLE)
            if self._context.interrupted:
                return _SpecOutcome.INTERRUPTED
            results = [validation.result for validation in preflight]
            average = average_completeness(results)
            if has_consensus(results):
                spec.transition(SpecStatus.COMPLETED)
                self._store.persist(self._session)
                self._logger.info("preflight_consensus", spec_file=spec.file, average=average)
                return _SpecOutcome.SETTLED
            if average >= config.preflight.threshold:
                allotted = min(allotted, config.preflight.iterations)
                feedback = feedback_from_validations(preflight)
            self._logger.info(
                "preflight_finished",
                spec_file=spec.file,
                average=average,
                cycles_allotted=allotted,
            )

        try:
            for _ in range(allotted):
                cycle = await self._run_cycle(spec, spec_text, feedback)
                if cycle is None:
                    return _SpecOutcome.INTERRUPTED
                if cycle.consensus_reached:
                    spec.transition(SpecStatus.COMPLETED)
                    self._store.persist(self._session)
                    self._logger.info(
                        "spec_completed", spec_file=spec.file, cycles=len(spec.cycles)
                    )
                    return _SpecOutcome.SETTLED
                feedback = feedback_from_validations(cycle.validations)
        except LeadExecutionError as exc:
            self._abort_on_lead_failure(spec, exc)
            raise

        if len(spec.cycles) >= config.max_iterations:
            return self._skip_for_budget(spec)
        spec.transition(
            SpecStatus.FAILED,
            error=(
                f"No consensus after {allotted} cycle(s) in this run "
                f"({len(spec.cycles)}/{config.max_iterations} total)."
            ),
        )
        self._store.persist(self._session)
        self._logger.warning("spec_failed", spec_file=spec.file, cycles=len(spec.cycles))
        return _SpecOutcome.FAILED

    async def _run_cycle(
        self, spec: SpecEntry, spec_text: str, feedback: Sequence[str]
    ) -> Cycle | None:
        """One lead-then-validate round; ``None`` when interrupted before it finished."""

        number = spec.next_cycle_number
        with correlation_scope(cycle=number):
            started_at = utc_now()
            self._logger.info("cycle_started", spec_file=spec.file, cycle=number)
            prompts = self._settings.prompts
            lead_prompt = build_lead_prompt(
                spec_file=spec.file,
                spec_content=spec_text,
                context_docs=self._context_docs(),
                feedback=feedback,
                listing=directory_listing(self._cwd, prompts),
                previous_reports=self._reports.previous_validator_reports(
                    spec.id, number - 1, self._session.validators
                ),
                report_excerpts=self._reports.recent_excerpts(
                    limit=prompts.recent_reports, max_chars=prompts.report_excerpt_chars
                ),
            )

            with correlation_scope(role="lead"):
                outcome = await run_lead_with_fallback(
                    self._runner,
                    RoleAssignment(self._session.lead, tuple(self._session.validators)),
                    self._available,
                    lead_prompt,
                    self._cwd,
                    self._session.config.timeout_seconds,
                    on_reassign=self._reassign,
                    cooldown_seconds=self._settings.rate_limit_cooldown_seconds,
                    context=self._context,
                    logger=self._logger,
                )
            if self._context.interrupted:
                return None
            lead_result = outcome.result
            self._reports.write_lead_report(spec.id, number, outcome.tool, lead_result.output)
            if not lead_result.output.strip():
                raise EmptyLeadOutputError(outcome.tool, lead_result.exit_code)

            validations = await self._validate(spec, spec_text, number)
            if self._context.interrupted:
                return None

            consensus = has_consensus(validation.result for validation in validations)
            cycle = Cycle(
                number=number,
                spec_id=spec.id,
                started_at=started_at,
                lead=LeadExecution(
                    tool=outcome.tool,
                    prompt=lead_prompt,
                    output=lead_result.output,
                    duration_ms=lead_result.duration_ms,
                    exit_code=lead_result.exit_code,
                ),
                validations=validations,
                consensus_reached=consensus,
                completed_at=utc_now(),
            )
            spec.record_cycle(cycle)
            self._store.persist(self._session)
            self._logger.info(
                "cycle_finished",
                spec_file=spec.file,
                consensus=consensus,
                passes=sum(1 for validation in validations if validation.result.passed),
                validators=len(validations),
                average=average_completeness(validation.result for validation in validations),
            )
            return cycle

    async def _validate(self, spec: SpecEntry, spec_text: str, number: int) -> list[Validation]:
        prompt = build_validation_prompt(
            spec_file=spec.file,
            spec_content=spec_text,
            codebase=read_codebase(self._cwd, self._settings.prompts),
            context_docs=self._context_docs(),
        )
        with correlation_scope(role="validator"):
            validations = await validate_all(
                self._runner,
                self._session.validators,
                prompt,
                self._cwd,
                self._session.config.timeout_seconds,
                logger=self._logger,
            )
        if not self._context.interrupted:
            for validation in validations:
                self._reports.write_validator_report(spec.id, number, validation)
        return validations

    async def _validate_specs(self) -> RunOutcome:
        session = self._session
        session.status = SessionStatus.IN_PROGRESS
        self._store.persist(session)
        while session.current_spec_index < len(session.specs):
            if self._context.interrupted:
                return self._interrupted()
            index = session.current_spec_index
            spec = session.specs[index]
            with correlation_scope(spec_id=spec.id):
                if not spec.is_finished:
                    if spec.context_only:
                        spec.transition(SpecStatus.SKIPPED)
                    elif not await self._validate_once(spec):
                        return self._interrupted()
            session.advance_to(index + 1)
            self._store.persist(session)
        return self._finish()

    async def _validate_once(self, spec: SpecEntry) -> bool:
        """Single validation pass of ``spec``; ``False`` when interrupted."""

        spec.transition(SpecStatus.IN_PROGRESS)
        self._store.persist(self._session)
        try:
            spec_text = self._read_spec(spec)
        except OSError as exc:
            spec.transition(SpecStatus.FAILED, error=f"Spec file unreadable: {exc}")
            return True
        validations = await self._validate(spec, spec_text, 1)
        if self._context.interrupted:
            return False
        results = [validation.result for validation in validations]
        average = average_completeness(results)
        if has_consensus(results):
            spec.transition(SpecStatus.COMPLETED)
        else:
            failing = [v.tool.value for v in validations if not v.result.passed]
            spec.transition(
                SpecStatus.FAILED,
                error=(
                    f"Validation failed ({', '.join(failing)}); "
                    f"average completeness {average:.0f}%."
                ),
            )
        self._logger.info(
            "spec_validated", spec_file=spec.file, status=spec.status.value, average=average
        )
        return True

    def _finish(self) -> RunOutcome:
        session = self._session
        settled = all(
            spec.status in (SpecStatus.COMPLETED, SpecStatus.SKIPPED) for spec in session.specs
        )
        if settled:
            self._store.complete(session)
        else:
            session.status = SessionStatus.PARTIAL
            self._store.persist(session)
        self._reports.write_summary(session)
        self._logger.info("run_finished", status=session.status.value)
        return RunOutcome(session)

    def _interrupted(self) -> RunOutcome:
        self._store.persist(self._session)
        self._reports.write_summary(self._session)
        self._logger.warning(
            "run_interrupted",
            reason=self._context.interrupt_reason,
            spec_index=self._session.current_spec_index,
        )
        return RunOutcome(self._session, interrupted=True)

    def _skip_for_budget(self, spec: SpecEntry) -> _SpecOutcome:
        max_iterations = self._session.config.max_iterations
        if spec.status is SpecStatus.PENDING:
            spec.transition(SpecStatus.IN_PROGRESS)
        spec.transition(SpecStatus.SKIPPED, error=budget_exhausted_message(spec, max_iterations))
        self._store.persist(self._session)
        self._logger.warning(
            "spec_skipped", spec_file=spec.file, reason="iteration_budget", cycles=len(spec.cycles)
        )
        return _SpecOutcome.BUDGET_SKIPPED

    def _abort_on_lead_failure(self, spec: SpecEntry, exc: LeadExecutionError) -> None:
        spec.transition(SpecStatus.FAILED, error=str(exc))
        self._session.status = SessionStatus.PARTIAL
        self._store.persist(self._session)
        self._reports.write_summary(self._session)
        self._logger.error(
            "lead_failed",
            spec_file=spec.file,
            tool=exc.tool.value,
            exit_code=exc.exit_code,
            error=str(exc),
        )

    def _reassign(self, assignment: RoleAssignment) -> None:
        assignment.apply_to(self._session)
        self._store.persist(self._session)

    def _rewind_to_failed(self) -> None:
        session = self._session
        if session.current_spec_index < len(session.specs):
            return
        for index, spec in enumerate(session.specs):
            if spec.status is SpecStatus.FAILED:
                session.advance_to(index)
                return

    def _context_docs(self) -> list[str]:
        return [spec.file for spec in self._session.specs if spec.context_only]

    def _read_spec(self, spec: SpecEntry) -> str:
        path = Path(spec.path)
        if not path.is_absolute():
            path = self._cwd / path
        return path.read_text(encoding="utf-8")


__all__ = [
    "CycleOrchestrator",
    "OrchestratorSettings",
    "PREFLIGHT_CYCLE",
    "RunOutcome",
    "budget_exhausted_message",
    "feedback_from_validations",
]
