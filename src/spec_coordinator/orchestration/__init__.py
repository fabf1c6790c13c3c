"""Cycle orchestration: sessions, prompts, parsing, consensus and the run loop."""

from spec_coordinator.orchestration.consensus import (
    average_completeness,
    consensus_reached,
    has_consensus,
)
from spec_coordinator.orchestration.context import RunContext
from spec_coordinator.orchestration.cycle import (
    CycleOrchestrator,
    OrchestratorSettings,
    RunOutcome,
)
from spec_coordinator.orchestration.parsing import parse_validation_output
from spec_coordinator.orchestration.prompts import PromptSettings
from spec_coordinator.orchestration.reports import ReportWriter, clean_state
from spec_coordinator.orchestration.session import SessionStore, StatePaths, needs_resume

__all__ = [
    "CycleOrchestrator",
    "OrchestratorSettings",
    "PromptSettings",
    "ReportWriter",
    "RunContext",
    "RunOutcome",
    "SessionStore",
    "StatePaths",
    "average_completeness",
    "clean_state",
    "consensus_reached",
    "has_consensus",
    "needs_resume",
    "parse_validation_output",
]
