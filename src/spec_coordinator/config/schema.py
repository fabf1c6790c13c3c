"""
spec-coordinator - configuration schema and validation.

Purpose
- Define authoritative configuration defaults and strict validation rules.

Rules
- Every section and field is known; unknown keys are reported, never ignored.
- Validation collects every issue with its dotted path before failing.
- Profiles are partial overlays deep-merged onto the effective config and
  re-validated as a whole.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, NotRequired, TypedDict

from spec_coordinator.constants import CONFIG_SCHEMA_VERSION
from spec_coordinator.domain.models import ToolName

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("fast", "thorough")
TOOL_NAMES: Final[tuple[str, ...]] = tuple(tool.value for tool in ToolName)
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
SANDBOX_BACKENDS: Final[tuple[str, ...]] = ("docker", "podman")


class MetaConfig(TypedDict):
    schema_version: int


class RunConfig(TypedDict):
    max_iterations: int
    max_iterations_per_run: int
    timeout_minutes: float
    stop_on_failure: bool
    interactive: bool
    heartbeat_seconds: float
    tool_throttle_seconds: float
    rate_limit_cooldown_seconds: float
    test_mode: bool


class PreflightConfig(TypedDict):
    enabled: bool
    threshold: int
    iterations: int


class RolesConfig(TypedDict):
    lead: NotRequired[Literal["claude", "codex", "gemini"]]
    validators: NotRequired[list[str]]


class PermissionsConfig(TypedDict):
    lead_allowed_tools: list[str]


class SandboxConfig(TypedDict):
    enabled: bool
    backend: Literal["docker", "podman"]
    image: str


class InterruptConfig(TypedDict):
    grace_seconds: float


class SpecsConfig(TypedDict):
    include: list[str]
    exclude: list[str]


class PromptsConfig(TypedDict):
    listing_limit: int
    max_files: int
    max_file_bytes: int
    recent_reports: int
    report_excerpt_chars: int
    stdin_threshold: int


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_to_stderr: bool
    redact_secrets: bool
    retention_days: int


class ProfileOverlay(TypedDict, total=False):
    run: dict[str, object]
    preflight: dict[str, object]
    roles: dict[str, object]
    permissions: dict[str, object]
    sandbox: dict[str, object]
    interrupt: dict[str, object]
    specs: dict[str, object]
    prompts: dict[str, object]
    observability: dict[str, object]


class CoordinatorConfig(TypedDict):
    meta: MetaConfig
    run: RunConfig
    preflight: PreflightConfig
    roles: RolesConfig
    permissions: PermissionsConfig
    sandbox: SandboxConfig
    interrupt: InterruptConfig
    specs: SpecsConfig
    prompts: PromptsConfig
    observability: ObservabilityConfig
    profiles: dict[str, ProfileOverlay]


DEFAULT_CONFIG: Final[CoordinatorConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "run": {
        "max_iterations": 5,
        "max_iterations_per_run": 5,
        "timeout_minutes": 10.0,
        "stop_on_failure": False,
        "interactive": False,
        "heartbeat_seconds": 0.0,
        "tool_throttle_seconds": 2.0,
        "rate_limit_cooldown_seconds": 5.0,
        "test_mode": False,
    },
    "preflight": {
        "enabled": True,
        "threshold": 70,
        "iterations": 2,
    },
    "roles": {},
    "permissions": {
        "lead_allowed_tools": [],
    },
    "sandbox": {
        "enabled": False,
        "backend": "docker",
        "image": "node:20",
    },
    "interrupt": {
        "grace_seconds": 2.0,
    },
    "specs": {
        "include": [],
        "exclude": [],
    },
    "prompts": {
        "listing_limit": 50,
        "max_files": 100,
        "max_file_bytes": 50_000,
        "recent_reports": 6,
        "report_excerpt_chars": 8_000,
        "stdin_threshold": 100_000,
    },
    "observability": {
        "log_level": "INFO",
        "log_to_stderr": False,
        "redact_secrets": True,
        "retention_days": 30,
    },
    "profiles": {
        "fast": {
            "run": {"max_iterations": 3, "max_iterations_per_run": 3, "timeout_minutes": 5.0},
            "preflight": {"enabled": False},
        },
        "thorough": {
            "run": {"max_iterations": 8, "max_iterations_per_run": 8, "timeout_minutes": 20.0},
            "preflight": {"threshold": 85, "iterations": 3},
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


_FieldParser = Callable[[object, str, _IssueCollector], object | None]


def default_config() -> CoordinatorConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade speccoord.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the spec-coordinator runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply a named profile overlay and re-validate the resulting config."""

    materialized = _deep_copy_mapping(config)
    if profile is None or not profile.strip():
        return materialized
    selected = profile.strip()

    profiles_raw = materialized.get("profiles")
    overlay_raw = profiles_raw.get(selected) if isinstance(profiles_raw, Mapping) else None
    if overlay_raw is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )
    return assert_valid_config(merge_config(materialized, overlay_raw))


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)
    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    sections = set(_SECTION_FIELDS)
    _reject_unknown_keys(payload, sections | {"profiles"}, "", issues)
    _require_keys(payload, sections, "", issues)

    out: dict[str, Any] = {}
    for name in sorted(sections):
        raw = payload.get(name)
        if raw is None:
            continue
        section = _as_object(raw, name, issues)
        if section is not None:
            out[name] = _validate_section(name, section, name, issues, partial=False)

    meta = out.get("meta", {})
    version = meta.get("schema_version")
    if isinstance(version, int) and version != ConfigSchemaVersion:
        issues.add("meta.schema_version", migration_guidance(version))

    run = out.get("run", {})
    per_run, lifetime = run.get("max_iterations_per_run"), run.get("max_iterations")
    if isinstance(per_run, int) and isinstance(lifetime, int) and per_run > lifetime:
        issues.add("run.max_iterations_per_run", "must not exceed run.max_iterations")

    roles = out.get("roles", {})
    lead, validators = roles.get("lead"), roles.get("validators")
    if isinstance(lead, str) and isinstance(validators, list) and lead in validators:
        issues.add("roles.validators", f"lead {lead!r} must not also be a validator")

    profiles_raw = payload.get("profiles")
    if profiles_raw is not None:
        profiles = _as_object(profiles_raw, "profiles", issues)
        if profiles is not None:
            out["profiles"] = _validate_profiles(profiles, issues)
    return out


def _validate_section(
    name: str,
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    fields = _SECTION_FIELDS[name]
    _reject_unknown_keys(payload, set(fields), path, issues)
    if not partial:
        _require_keys(payload, _REQUIRED_FIELDS.get(name, set(fields)), path, issues)

    out: dict[str, Any] = {}
    for key in sorted(payload):
        parser = fields.get(key)
        if parser is None:
            continue
        parsed = parser(payload[key], _join(path, key), issues)
        if parsed is not None:
            out[key] = parsed
    return out


def _validate_profiles(
    payload: Mapping[str, object], issues: _IssueCollector
) -> dict[str, dict[str, Any]]:
    out: dict[str, dict[str, Any]] = {}
    for profile_name in sorted(payload):
        profile_path = _join("profiles", profile_name)
        overlay = _as_object(payload[profile_name], profile_path, issues)
        if overlay is None:
            continue
        overlay_sections = set(_SECTION_FIELDS) - {"meta"}
        _reject_unknown_keys(overlay, overlay_sections, profile_path, issues)
        normalized: dict[str, Any] = {}
        for section_name in sorted(overlay):
            if section_name not in overlay_sections:
                continue
            section_path = _join(profile_path, section_name)
            section = _as_object(overlay[section_name], section_path, issues)
            if section is not None:
                normalized[section_name] = _validate_section(
                    section_name, section, section_path, issues, partial=True
                )
        out[profile_name] = normalized
    return out


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _int_field(*, minimum: int | None = None, maximum: int | None = None) -> _FieldParser:
    def parse(value: object, path: str, issues: _IssueCollector) -> int | None:
        if isinstance(value, bool) or not isinstance(value, int):
            issues.add(path, f"expected integer, got {type(value).__name__}")
            return None
        if minimum is not None and value < minimum:
            issues.add(path, f"must be >= {minimum}")
            return None
        if maximum is not None and value > maximum:
            issues.add(path, f"must be <= {maximum}")
            return None
        return value

    return parse


def _float_field(*, minimum: float = 0.0, exclusive: bool = False) -> _FieldParser:
    def parse(value: object, path: str, issues: _IssueCollector) -> float | None:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            issues.add(path, f"expected number, got {type(value).__name__}")
            return None
        parsed = float(value)
        if not math.isfinite(parsed):
            issues.add(path, "must be finite")
            return None
        if parsed < minimum or (exclusive and parsed == minimum):
            issues.add(path, f"must be {'>' if exclusive else '>='} {minimum:g}")
            return None
        return parsed

    return parse


def _enum_field(allowed_values: tuple[str, ...]) -> _FieldParser:
    def parse(value: object, path: str, issues: _IssueCollector) -> str | None:
        parsed = _as_str(value, path, issues)
        if parsed is None:
            return None
        if parsed not in allowed_values:
            expected = ", ".join(sorted(allowed_values))
            issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
            return None
        return parsed

    return parse


def _str_list_field(allowed_values: tuple[str, ...] | None = None) -> _FieldParser:
    def parse(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
        if not isinstance(value, list):
            issues.add(path, f"expected array, got {type(value).__name__}")
            return None
        out: list[str] = []
        for index, item in enumerate(value):
            item_path = f"{path}[{index}]"
            parsed = _as_str(item, item_path, issues)
            if parsed is None:
                continue
            if allowed_values is not None and parsed not in allowed_values:
                expected = ", ".join(sorted(allowed_values))
                issues.add(item_path, f"invalid value {parsed!r}; expected one of: {expected}")
                continue
            if parsed in out:
                issues.add(item_path, f"duplicate value {parsed!r}")
                continue
            out.append(parsed)
        return out

    return parse


def _str_field(value: object, path: str, issues: _IssueCollector) -> str | None:
    return _as_str(value, path, issues)


def _bool_field(value: object, path: str, issues: _IssueCollector) -> bool | None:
    return _as_bool(value, path, issues)


_SECTION_FIELDS: Final[dict[str, dict[str, _FieldParser]]] = {
    "meta": {"schema_version": _int_field(minimum=1)},
    "run": {
        "max_iterations": _int_field(minimum=1),
        "max_iterations_per_run": _int_field(minimum=1),
        "timeout_minutes": _float_field(exclusive=True),
        "stop_on_failure": _bool_field,
        "interactive": _bool_field,
        "heartbeat_seconds": _float_field(),
        "tool_throttle_seconds": _float_field(),
        "rate_limit_cooldown_seconds": _float_field(),
        "test_mode": _bool_field,
    },
    "preflight": {
        "enabled": _bool_field,
        "threshold": _int_field(minimum=0, maximum=100),
        "iterations": _int_field(minimum=1),
    },
    "roles": {
        "lead": _enum_field(TOOL_NAMES),
        "validators": _str_list_field(TOOL_NAMES),
    },
    "permissions": {"lead_allowed_tools": _str_list_field()},
    "sandbox": {
        "enabled": _bool_field,
        "backend": _enum_field(SANDBOX_BACKENDS),
        "image": _str_field,
    },
    "interrupt": {"grace_seconds": _float_field()},
    "specs": {"include": _str_list_field(), "exclude": _str_list_field()},
    "prompts": {
        "listing_limit": _int_field(minimum=0),
        "max_files": _int_field(minimum=0),
        "max_file_bytes": _int_field(minimum=1),
        "recent_reports": _int_field(minimum=0),
        "report_excerpt_chars": _int_field(minimum=1),
        "stdin_threshold": _int_field(minimum=1),
    },
    "observability": {
        "log_level": _enum_field(LOG_LEVELS),
        "log_to_stderr": _bool_field,
        "redact_secrets": _bool_field,
        "retention_days": _int_field(minimum=1),
    },
}

# Sections whose fields are all optional.
_REQUIRED_FIELDS: Final[dict[str, set[str]]] = {"roles": set()}


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = _deep_copy_value(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: _deep_copy_value(value[key]) for key in sorted(value)}


def _deep_copy_value(value: object) -> Any:
    if isinstance(value, Mapping):
        return {key: _deep_copy_value(item) for key, item in value.items() if isinstance(key, str)}
    if isinstance(value, list):
        return [_deep_copy_value(item) for item in value]
    return copy.deepcopy(value)


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "CoordinatorConfig",
    "DEFAULT_CONFIG",
    "ProfileOverlay",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
