"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import UTC, datetime
from enum import Enum, StrEnum
from typing import NoReturn, TypeVar, cast

from spec_coordinator.constants import SESSION_SCHEMA_VERSION
from spec_coordinator.domain import ids as domain_ids

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TModel = TypeVar("TModel", bound="CanonicalModel")
TEnum = TypeVar("TEnum", bound=Enum)

_MAX_TEXT = 4096
MIN_MATURITY = 1
MAX_MATURITY = 5


class ToolName(StrEnum):
    """Closed set of supported external coding agents, in lead priority order."""

    CLAUDE = "claude"
    CODEX = "codex"
    GEMINI = "gemini"


class Role(StrEnum):
    LEAD = "lead"
    VALIDATOR = "validator"


class SessionStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    ABANDONED = "abandoned"


class SessionMode(StrEnum):
    RUN = "run"
    VALIDATE = "validate"


class SpecStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class VerdictStatus(StrEnum):
    PASS = "PASS"
    FAIL = "FAIL"


class Complexity(StrEnum):
    EASY = "EASY"
    MODERATE = "MODERATE"
    HIGH = "HIGH"


# Forward-only state machine. FAILED -> IN_PROGRESS goes through SpecEntry.reopen().
_SPEC_TRANSITIONS: dict[SpecStatus, frozenset[SpecStatus]] = {
    SpecStatus.PENDING: frozenset({SpecStatus.IN_PROGRESS, SpecStatus.SKIPPED}),
    SpecStatus.IN_PROGRESS: frozenset(
        {SpecStatus.COMPLETED, SpecStatus.FAILED, SpecStatus.SKIPPED}
    ),
    SpecStatus.FAILED: frozenset({SpecStatus.SKIPPED}),
    SpecStatus.COMPLETED: frozenset(),
    SpecStatus.SKIPPED: frozenset(),
}

TERMINAL_SPEC_STATUSES: frozenset[SpecStatus] = frozenset(
    {SpecStatus.COMPLETED, SpecStatus.SKIPPED}
)


class InvalidTransitionError(ValueError):
    """Raised when a spec status change would move backwards."""

    def __init__(self, spec_file: str, current: SpecStatus, target: SpecStatus) -> None:
        super().__init__(f"{spec_file}: cannot move from {current.value} to {target.value}")
        self.spec_file = spec_file
        self.current = current
        self.target = target


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class CanonicalModel:
    """Mixin for canonical dict/json serialization."""

    def to_dict(self) -> dict[str, JSONValue]:
        serialized = _serialize_value(self, self.__class__.__name__)
        if not isinstance(serialized, dict):
            _fail(self.__class__.__name__, "serialized model must be an object")
        return serialized

    @classmethod
    def from_json(cls: type[TModel], raw: str) -> TModel:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            _fail(cls.__name__, f"invalid JSON: {exc}")
        if not isinstance(parsed, dict):
            _fail(cls.__name__, "JSON root must be an object")
        return cls.from_dict(parsed)

    @classmethod
    def from_dict(cls: type[TModel], data: Mapping[str, object]) -> TModel:
        _fail(cls.__name__, "from_dict is not implemented for this model type")


@dataclass(frozen=True, slots=True)
class ValidationResult(CanonicalModel):
    """One validator's verdict on one cycle."""

    completeness: int
    status: VerdictStatus
    gaps: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        completeness = _as_int(self.completeness, "ValidationResult.completeness")
        if not 0 <= completeness <= 100:
            _fail("ValidationResult.completeness", "must be within 0..100")
        object.__setattr__(self, "completeness", completeness)
        object.__setattr__(
            self, "status", _as_enum(VerdictStatus, self.status, "ValidationResult.status")
        )
        object.__setattr__(
            self, "gaps", _as_text_tuple(self.gaps, "ValidationResult.gaps")
        )
        object.__setattr__(
            self,
            "recommendations",
            _as_text_tuple(self.recommendations, "ValidationResult.recommendations"),
        )

    @property
    def passed(self) -> bool:
        return self.status is VerdictStatus.PASS

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ValidationResult:
        parsed = _expect_object(
            data,
            "ValidationResult",
            required={"completeness", "status"},
            optional={"gaps", "recommendations"},
        )
        return cls(
            completeness=_as_int(parsed["completeness"], "ValidationResult.completeness"),
            status=_as_enum(VerdictStatus, parsed["status"], "ValidationResult.status"),
            gaps=_as_text_tuple(parsed.get("gaps", ()), "ValidationResult.gaps"),
            recommendations=_as_text_tuple(
                parsed.get("recommendations", ()), "ValidationResult.recommendations"
            ),
        )


@dataclass(slots=True)
class LeadExecution(CanonicalModel):
    tool: ToolName
    prompt: str
    output: str
    duration_ms: int
    exit_code: int

    def __post_init__(self) -> None:
        self.tool = _as_enum(ToolName, self.tool, "LeadExecution.tool")
        self.duration_ms = _as_int(self.duration_ms, "LeadExecution.duration_ms", minimum=0)
        self.exit_code = _as_int(self.exit_code, "LeadExecution.exit_code")

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> LeadExecution:
        parsed = _expect_object(
            data,
            "LeadExecution",
            required={"tool", "prompt", "output", "duration_ms", "exit_code"},
        )
        return cls(
            tool=_as_enum(ToolName, parsed["tool"], "LeadExecution.tool"),
            prompt=_as_raw_str(parsed["prompt"], "LeadExecution.prompt"),
            output=_as_raw_str(parsed["output"], "LeadExecution.output"),
            duration_ms=_as_int(parsed["duration_ms"], "LeadExecution.duration_ms", minimum=0),
            exit_code=_as_int(parsed["exit_code"], "LeadExecution.exit_code"),
        )


@dataclass(slots=True)
class Validation(CanonicalModel):
    tool: ToolName
    prompt: str
    output: str
    result: ValidationResult
    duration_ms: int
    exit_code: int

    def __post_init__(self) -> None:
        self.tool = _as_enum(ToolName, self.tool, "Validation.tool")
        if not isinstance(self.result, ValidationResult):
            _fail("Validation.result", "expected ValidationResult")
        self.duration_ms = _as_int(self.duration_ms, "Validation.duration_ms", minimum=0)
        self.exit_code = _as_int(self.exit_code, "Validation.exit_code")

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Validation:
        parsed = _expect_object(
            data,
            "Validation",
            required={"tool", "prompt", "output", "result", "duration_ms", "exit_code"},
        )
        return cls(
            tool=_as_enum(ToolName, parsed["tool"], "Validation.tool"),
            prompt=_as_raw_str(parsed["prompt"], "Validation.prompt"),
            output=_as_raw_str(parsed["output"], "Validation.output"),
            result=ValidationResult.from_dict(
                _expect_mapping(parsed["result"], "Validation.result")
            ),
            duration_ms=_as_int(parsed["duration_ms"], "Validation.duration_ms", minimum=0),
            exit_code=_as_int(parsed["exit_code"], "Validation.exit_code"),
        )


@dataclass(slots=True)
class Cycle(CanonicalModel):
    """One lead-then-validate round. ``number`` is 1-based within its spec."""

    number: int
    spec_id: str
    started_at: datetime
    lead: LeadExecution
    validations: list[Validation] = field(default_factory=list)
    consensus_reached: bool = False
    completed_at: datetime | None = None

    def __post_init__(self) -> None:
        self.number = _as_int(self.number, "Cycle.number", minimum=1)
        self.spec_id = _as_str(self.spec_id, "Cycle.spec_id")
        self.started_at = _as_datetime(self.started_at, "Cycle.started_at")
        if self.completed_at is not None:
            self.completed_at = _as_datetime(self.completed_at, "Cycle.completed_at")

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Cycle:
        parsed = _expect_object(
            data,
            "Cycle",
            required={"number", "spec_id", "started_at", "lead", "validations"},
            optional={"consensus_reached", "completed_at"},
        )
        validations = [
            Validation.from_dict(_expect_mapping(item, f"Cycle.validations[{index}]"))
            for index, item in enumerate(_as_sequence(parsed["validations"], "Cycle.validations"))
        ]
        return cls(
            number=_as_int(parsed["number"], "Cycle.number", minimum=1),
            spec_id=_as_str(parsed["spec_id"], "Cycle.spec_id"),
            started_at=_as_datetime(parsed["started_at"], "Cycle.started_at"),
            lead=LeadExecution.from_dict(_expect_mapping(parsed["lead"], "Cycle.lead")),
            validations=validations,
            consensus_reached=_as_bool(
                parsed.get("consensus_reached", False), "Cycle.consensus_reached"
            ),
            completed_at=_as_optional_datetime(parsed.get("completed_at"), "Cycle.completed_at"),
        )


@dataclass(frozen=True, slots=True)
class SpecMetadata(CanonicalModel):
    id: str
    name: str
    complexity: Complexity = Complexity.MODERATE
    maturity: int = 3
    depends_on: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", _as_str(self.id, "SpecMetadata.id"))
        object.__setattr__(self, "name", _as_str(self.name, "SpecMetadata.name"))
        object.__setattr__(
            self,
            "complexity",
            _as_enum(Complexity, self.complexity, "SpecMetadata.complexity"),
        )
        maturity = _as_int(self.maturity, "SpecMetadata.maturity")
        if not MIN_MATURITY <= maturity <= MAX_MATURITY:
            _fail("SpecMetadata.maturity", f"must be within {MIN_MATURITY}..{MAX_MATURITY}")
        object.__setattr__(self, "maturity", maturity)
        object.__setattr__(
            self, "depends_on", _as_text_tuple(self.depends_on, "SpecMetadata.depends_on")
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> SpecMetadata:
        parsed = _expect_object(
            data,
            "SpecMetadata",
            required={"id", "name"},
            optional={"complexity", "maturity", "depends_on"},
        )
        return cls(
            id=_as_str(parsed["id"], "SpecMetadata.id"),
            name=_as_str(parsed["name"], "SpecMetadata.name"),
            complexity=_as_enum(
                Complexity, parsed.get("complexity", Complexity.MODERATE), "SpecMetadata.complexity"
            ),
            maturity=_as_int(parsed.get("maturity", 3), "SpecMetadata.maturity"),
            depends_on=_as_text_tuple(parsed.get("depends_on", ()), "SpecMetadata.depends_on"),
        )


@dataclass(slots=True)
class SpecEntry(CanonicalModel):
    """One unit of work inside a session; owns its cycle history."""

    file: str
    path: str
    metadata: SpecMetadata
    status: SpecStatus = SpecStatus.PENDING
    cycles: list[Cycle] = field(default_factory=list)
    context_only: bool = False
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_error: str | None = None

    def __post_init__(self) -> None:
        self.file = _as_str(self.file, "SpecEntry.file")
        self.path = _as_str(self.path, "SpecEntry.path")
        self.status = _as_enum(SpecStatus, self.status, "SpecEntry.status")
        numbers = [cycle.number for cycle in self.cycles]
        if numbers != list(range(1, len(numbers) + 1)):
            _fail("SpecEntry.cycles", f"cycle numbers must be 1..n in order, got {numbers}")

    @property
    def id(self) -> str:
        return self.metadata.id

    @property
    def next_cycle_number(self) -> int:
        return len(self.cycles) + 1

    @property
    def is_finished(self) -> bool:
        return self.status in TERMINAL_SPEC_STATUSES

    def transition(self, target: SpecStatus, *, error: str | None = None) -> None:
        """Move forward to ``target``; same-state moves are no-ops."""

        target = _as_enum(SpecStatus, target, "SpecEntry.status")
        if target is self.status:
            if error is not None:
                self.last_error = error
            return
        if target not in _SPEC_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.file, self.status, target)
        if self.context_only and target is not SpecStatus.SKIPPED:
            raise InvalidTransitionError(self.file, self.status, target)

        now = utc_now()
        if target is SpecStatus.IN_PROGRESS and self.started_at is None:
            self.started_at = now
        if target in TERMINAL_SPEC_STATUSES:
            self.completed_at = now
        self.status = target
        if error is not None:
            self.last_error = error

    def reopen(self) -> None:
        """Resume a spec whose previous invocation ran out of allotted cycles."""

        if self.status is not SpecStatus.FAILED:
            raise InvalidTransitionError(self.file, self.status, SpecStatus.IN_PROGRESS)
        self.status = SpecStatus.IN_PROGRESS
        self.last_error = None

    def record_cycle(self, cycle: Cycle) -> None:
        if cycle.number != self.next_cycle_number:
            _fail(
                "SpecEntry.cycles",
                f"expected cycle {self.next_cycle_number} for {self.file}, got {cycle.number}",
            )
        self.cycles.append(cycle)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> SpecEntry:
        parsed = _expect_object(
            data,
            "SpecEntry",
            required={"file", "path", "metadata", "status", "cycles"},
            optional={"context_only", "started_at", "completed_at", "last_error"},
        )
        cycles = [
            Cycle.from_dict(_expect_mapping(item, f"SpecEntry.cycles[{index}]"))
            for index, item in enumerate(_as_sequence(parsed["cycles"], "SpecEntry.cycles"))
        ]
        return cls(
            file=_as_str(parsed["file"], "SpecEntry.file"),
            path=_as_str(parsed["path"], "SpecEntry.path"),
            metadata=SpecMetadata.from_dict(
                _expect_mapping(parsed["metadata"], "SpecEntry.metadata")
            ),
            status=_as_enum(SpecStatus, parsed["status"], "SpecEntry.status"),
            cycles=cycles,
            context_only=_as_bool(parsed.get("context_only", False), "SpecEntry.context_only"),
            started_at=_as_optional_datetime(parsed.get("started_at"), "SpecEntry.started_at"),
            completed_at=_as_optional_datetime(
                parsed.get("completed_at"), "SpecEntry.completed_at"
            ),
            last_error=_as_optional_raw_str(parsed.get("last_error"), "SpecEntry.last_error"),
        )


@dataclass(frozen=True, slots=True)
class PreflightSettings(CanonicalModel):
    enabled: bool = True
    threshold: int = 70
    iterations: int = 2

    def __post_init__(self) -> None:
        object.__setattr__(self, "enabled", _as_bool(self.enabled, "PreflightSettings.enabled"))
        threshold = _as_int(self.threshold, "PreflightSettings.threshold", minimum=0)
        if threshold > 100:
            _fail("PreflightSettings.threshold", "must be within 0..100")
        object.__setattr__(self, "threshold", threshold)
        object.__setattr__(
            self,
            "iterations",
            _as_int(self.iterations, "PreflightSettings.iterations", minimum=1),
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> PreflightSettings:
        parsed = _expect_object(
            data, "PreflightSettings", required=set(), optional={"enabled", "threshold", "iterations"}
        )
        return cls(
            enabled=_as_bool(parsed.get("enabled", True), "PreflightSettings.enabled"),
            threshold=_as_int(parsed.get("threshold", 70), "PreflightSettings.threshold"),
            iterations=_as_int(parsed.get("iterations", 2), "PreflightSettings.iterations"),
        )


@dataclass(frozen=True, slots=True)
class SessionConfig(CanonicalModel):
    """Per-session knobs persisted with the session so resume behaves identically."""

    max_iterations: int = 5
    max_iterations_per_run: int = 5
    timeout_minutes: float = 10.0
    lead_permissions: tuple[str, ...] = ()
    sandbox: bool = False
    stop_on_failure: bool = False
    preflight: PreflightSettings = field(default_factory=PreflightSettings)

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "max_iterations",
            _as_int(self.max_iterations, "SessionConfig.max_iterations", minimum=1),
        )
        object.__setattr__(
            self,
            "max_iterations_per_run",
            _as_int(self.max_iterations_per_run, "SessionConfig.max_iterations_per_run", minimum=1),
        )
        timeout = _as_float(self.timeout_minutes, "SessionConfig.timeout_minutes")
        if timeout <= 0:
            _fail("SessionConfig.timeout_minutes", "must be > 0")
        object.__setattr__(self, "timeout_minutes", timeout)
        object.__setattr__(
            self,
            "lead_permissions",
            _as_text_tuple(self.lead_permissions, "SessionConfig.lead_permissions"),
        )
        object.__setattr__(self, "sandbox", _as_bool(self.sandbox, "SessionConfig.sandbox"))
        object.__setattr__(
            self, "stop_on_failure", _as_bool(self.stop_on_failure, "SessionConfig.stop_on_failure")
        )

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_minutes * 60.0

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> SessionConfig:
        parsed = _expect_object(
            data,
            "SessionConfig",
            required={"max_iterations"},
            optional={
                "max_iterations_per_run",
                "timeout_minutes",
                "lead_permissions",
                "sandbox",
                "stop_on_failure",
                "preflight",
            },
        )
        max_iterations = _as_int(parsed["max_iterations"], "SessionConfig.max_iterations")
        preflight_raw = parsed.get("preflight")
        return cls(
            max_iterations=max_iterations,
            max_iterations_per_run=_as_int(
                parsed.get("max_iterations_per_run", max_iterations),
                "SessionConfig.max_iterations_per_run",
            ),
            timeout_minutes=_as_float(
                parsed.get("timeout_minutes", 10.0), "SessionConfig.timeout_minutes"
            ),
            lead_permissions=_as_text_tuple(
                parsed.get("lead_permissions", ()), "SessionConfig.lead_permissions"
            ),
            sandbox=_as_bool(parsed.get("sandbox", False), "SessionConfig.sandbox"),
            stop_on_failure=_as_bool(
                parsed.get("stop_on_failure", False), "SessionConfig.stop_on_failure"
            ),
            preflight=(
                PreflightSettings()
                if preflight_raw is None
                else PreflightSettings.from_dict(
                    _expect_mapping(preflight_raw, "SessionConfig.preflight")
                )
            ),
        )


@dataclass(slots=True)
class Session(CanonicalModel):
    """Durable record of one orchestration run in one working directory."""

    id: str
    working_directory: str
    lead: ToolName
    validators: list[ToolName]
    config: SessionConfig
    specs: list[SpecEntry]
    status: SessionStatus = SessionStatus.IN_PROGRESS
    current_spec_index: int = 0
    mode: SessionMode = SessionMode.RUN
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    schema_version: int = SESSION_SCHEMA_VERSION

    def __post_init__(self) -> None:
        try:
            domain_ids.validate_session_id(self.id)
        except ValueError as exc:
            _fail("Session.id", str(exc))
        self.working_directory = _as_str(self.working_directory, "Session.working_directory")
        self.lead, self.validators = _check_roles(self.lead, self.validators)
        self.status = _as_enum(SessionStatus, self.status, "Session.status")
        self.mode = _as_enum(SessionMode, self.mode, "Session.mode")
        self.current_spec_index = self._check_index(self.current_spec_index)
        self.created_at = _as_datetime(self.created_at, "Session.created_at")
        self.updated_at = _as_datetime(self.updated_at, "Session.updated_at")
        if self.schema_version != SESSION_SCHEMA_VERSION:
            _fail(
                "Session.schema_version",
                f"unsupported version {self.schema_version}; expected {SESSION_SCHEMA_VERSION}",
            )

    @property
    def is_finished(self) -> bool:
        return self.current_spec_index >= len(self.specs)

    def apply_roles(self, lead: ToolName, validators: Sequence[ToolName]) -> None:
        """Replace the role assignment, rejecting it if it breaks the invariants."""

        self.lead, self.validators = _check_roles(lead, validators)

    def advance_to(self, index: int) -> None:
        self.current_spec_index = self._check_index(index)

    def all_specs_settled(self) -> bool:
        return all(spec.is_finished for spec in self.specs)

    def _check_index(self, index: int) -> int:
        checked = _as_int(index, "Session.current_spec_index", minimum=0)
        if checked > len(self.specs):
            _fail(
                "Session.current_spec_index",
                f"must be within 0..{len(self.specs)}, got {checked}",
            )
        return checked

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Session:
        parsed = _expect_object(
            data,
            "Session",
            required={
                "id",
                "working_directory",
                "lead",
                "validators",
                "config",
                "specs",
                "status",
                "current_spec_index",
                "created_at",
                "updated_at",
            },
            optional={"mode", "schema_version"},
        )
        specs = [
            SpecEntry.from_dict(_expect_mapping(item, f"Session.specs[{index}]"))
            for index, item in enumerate(_as_sequence(parsed["specs"], "Session.specs"))
        ]
        validators = [
            _as_enum(ToolName, item, f"Session.validators[{index}]")
            for index, item in enumerate(_as_sequence(parsed["validators"], "Session.validators"))
        ]
        return cls(
            id=_as_str(parsed["id"], "Session.id"),
            working_directory=_as_str(parsed["working_directory"], "Session.working_directory"),
            lead=_as_enum(ToolName, parsed["lead"], "Session.lead"),
            validators=validators,
            config=SessionConfig.from_dict(_expect_mapping(parsed["config"], "Session.config")),
            specs=specs,
            status=_as_enum(SessionStatus, parsed["status"], "Session.status"),
            current_spec_index=_as_int(parsed["current_spec_index"], "Session.current_spec_index"),
            mode=_as_enum(SessionMode, parsed.get("mode", SessionMode.RUN), "Session.mode"),
            created_at=_as_datetime(parsed["created_at"], "Session.created_at"),
            updated_at=_as_datetime(parsed["updated_at"], "Session.updated_at"),
            schema_version=_as_int(
                parsed.get("schema_version", SESSION_SCHEMA_VERSION), "Session.schema_version"
            ),
        )


def _check_roles(
    lead: object, validators: Sequence[object]
) -> tuple[ToolName, list[ToolName]]:
    checked_lead = _as_enum(ToolName, lead, "Session.lead")
    checked_validators = [
        _as_enum(ToolName, item, f"Session.validators[{index}]")
        for index, item in enumerate(_as_sequence(validators, "Session.validators"))
    ]
    if not checked_validators:
        _fail("Session.validators", "at least one validator is required")
    if checked_lead in checked_validators:
        _fail("Session.validators", f"lead {checked_lead.value!r} must not also validate")
    if len(set(checked_validators)) != len(checked_validators):
        _fail("Session.validators", "contains duplicate tools")
    return checked_lead, checked_validators


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str] | None = None,
) -> dict[str, object]:
    parsed = _expect_mapping(value, path)

    allowed = required | (optional or set())
    unknown = sorted(key for key in parsed if key not in allowed)
    if unknown:
        _fail(path, f"unexpected fields: {unknown}")

    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")

    return parsed


def _expect_mapping(value: object, path: str) -> dict[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        parsed[key] = item
    return parsed


def _as_str(value: object, path: str, *, max_len: int = _MAX_TEXT) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    normalized = value.strip()
    if not normalized:
        _fail(path, "must be at least 1 character(s)")
    if len(normalized) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return normalized


def _as_raw_str(value: object, path: str) -> str:
    # Prompts and transcripts are stored verbatim, whatever their size.
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    return value


def _as_optional_raw_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_raw_str(value, path)


def _as_bool(value: object, path: str) -> bool:
    if isinstance(value, bool):
        return value
    _fail(path, f"expected boolean, got {type(value).__name__}")


def _as_int(value: object, path: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_float(value: object, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _fail(path, f"expected number, got {type(value).__name__}")
    parsed = float(value)
    if not math.isfinite(parsed):
        _fail(path, "must be finite")
    return parsed


def _as_datetime(value: object, path: str) -> datetime:
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            _fail(path, f"invalid ISO-8601 datetime: {value!r} ({exc})")
    else:
        _fail(path, f"expected datetime or ISO-8601 string, got {type(value).__name__}")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        _fail(path, "datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


def _as_optional_datetime(value: object, path: str) -> datetime | None:
    if value is None:
        return None
    return _as_datetime(value, path)


def _datetime_to_iso8601z(value: datetime) -> str:
    normalized = _as_datetime(value, "datetime")
    return normalized.isoformat(timespec="microseconds").replace("+00:00", "Z")


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(item.value for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_sequence(value: object, path: str) -> list[object]:
    if isinstance(value, (list, tuple)):
        return list(value)
    _fail(path, f"expected array, got {type(value).__name__}")


def _as_text_tuple(value: object, path: str) -> tuple[str, ...]:
    parsed: list[str] = []
    for index, item in enumerate(_as_sequence(value, path)):
        parsed.append(_as_raw_str(item, f"{path}[{index}]"))
    return tuple(parsed)


def _serialize_value(value: object, path: str) -> JSONValue:
    if value is None or isinstance(value, bool):
        return cast("JSONValue", value)
    if isinstance(value, Enum):
        raw = value.value
        if not isinstance(raw, str):
            _fail(path, "enum value must be string")
        return raw
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, str):
        return value
    if isinstance(value, datetime):
        return _datetime_to_iso8601z(value)
    if isinstance(value, (list, tuple)):
        return [_serialize_value(item, f"{path}[]") for item in value]
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, "dict keys must be strings")
            out[key] = _serialize_value(item, f"{path}.{key}")
        return out
    if is_dataclass(value) and not isinstance(value, type):
        return {
            item.name: _serialize_value(getattr(value, item.name), f"{path}.{item.name}")
            for item in fields(value)
        }
    _fail(path, f"value is not JSON-serializable ({type(value).__name__})")


__all__ = [
    "CanonicalModel",
    "Complexity",
    "Cycle",
    "InvalidTransitionError",
    "JSONValue",
    "LeadExecution",
    "MAX_MATURITY",
    "MIN_MATURITY",
    "PreflightSettings",
    "Role",
    "Session",
    "SessionConfig",
    "SessionMode",
    "SessionStatus",
    "SpecEntry",
    "SpecMetadata",
    "SpecStatus",
    "TERMINAL_SPEC_STATUSES",
    "ToolName",
    "Validation",
    "ValidationResult",
    "VerdictStatus",
    "utc_now",
]
