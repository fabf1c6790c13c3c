"""Domain models: session aggregate, spec entries, cycles and verdicts."""

from spec_coordinator.domain.ids import generate_session_id, validate_session_id
from spec_coordinator.domain.models import (
    Complexity,
    Cycle,
    InvalidTransitionError,
    LeadExecution,
    PreflightSettings,
    Role,
    Session,
    SessionConfig,
    SessionMode,
    SessionStatus,
    SpecEntry,
    SpecMetadata,
    SpecStatus,
    ToolName,
    Validation,
    ValidationResult,
    VerdictStatus,
)

__all__ = [
    "Complexity",
    "Cycle",
    "InvalidTransitionError",
    "LeadExecution",
    "PreflightSettings",
    "Role",
    "Session",
    "SessionConfig",
    "SessionMode",
    "SessionStatus",
    "SpecEntry",
    "SpecMetadata",
    "SpecStatus",
    "ToolName",
    "Validation",
    "ValidationResult",
    "VerdictStatus",
    "generate_session_id",
    "validate_session_id",
]
