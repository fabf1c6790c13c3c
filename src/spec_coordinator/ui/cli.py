"""Command-line interface router for spec-coordinator."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import shutil
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import structlog
from rich.prompt import Confirm

from spec_coordinator.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)
from spec_coordinator.constants import INTERRUPTED_EXIT_STATUS, SPECS_DIR
from spec_coordinator.domain.models import (
    PreflightSettings,
    Session,
    SessionConfig,
    SessionMode,
    SessionStatus,
    ToolName,
)
from spec_coordinator.errors import NoToolsAvailableError, NothingToResumeError, PreconditionError
from spec_coordinator.observability import configure_structlog, setup_logging, shutdown_logging
from spec_coordinator.orchestration import (
    CycleOrchestrator,
    OrchestratorSettings,
    PromptSettings,
    RunContext,
    RunOutcome,
    SessionStore,
    clean_state,
    needs_resume,
)
from spec_coordinator.specs.discovery import LoadedSpec, load_specs
from spec_coordinator.specs.ordering import order_specs
from spec_coordinator.tools.detection import ToolRegistry, detect_tools
from spec_coordinator.tools.roles import RoleAssignment, assign_roles, normalize_resumed_roles
from spec_coordinator.tools.runner import ProcessToolRunner
from spec_coordinator.tools.sandbox import SandboxSettings, ensure_sandbox_available
from spec_coordinator.ui.render import CLIRenderer, create_renderer

EXAMPLE_SPEC_NAME: Final[str] = "example-feature.md"
EXAMPLE_SPEC: Final[str] = """\
---
specmas: v3
kind: FeatureSpec
id: example-feature
name: Example Feature
version: 1.0.0
complexity: EASY
maturity: 3
---

# Example Feature

Describe your feature here.
"""

_TOOL_CHOICES: Final[tuple[str, ...]] = tuple(tool.value for tool in ToolName)

_logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="speccoord",
        description=(
            "spec-coordinator: one agent implements, the others validate.\n\n"
            "Common workflows:\n"
            "  speccoord init              Create specs/ with an example spec\n"
            "  speccoord run               Implement every spec in ./specs\n"
            "  speccoord validate          Validate specs without a lead\n"
            "  speccoord status            Show the current session\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--dir",
        dest="working_dir",
        default=".",
        help="Project directory holding specs/ (default: current directory).",
    )
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to TOML config (default: ./speccoord.toml if present).",
    )
    common.add_argument("--profile", default=None, help="Config profile overlay name.")
    common.add_argument(
        "--log-level",
        default=None,
        help="Log level for the session log (DEBUG, INFO, WARNING, ERROR).",
    )
    common.add_argument(
        "--verbose", "-v", action="store_true", default=False, help="Show detailed output."
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Implement specs with a lead agent and validate them",
        description=(
            "Run lead/validate cycles for every spec until validators agree.\n\n"
            "Examples:\n"
            "  speccoord run\n"
            "  speccoord run --lead codex --validators claude,gemini\n"
            "  speccoord run --resume\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument("--lead", choices=_TOOL_CHOICES, default=None, help="Lead tool.")
    run_parser.add_argument(
        "--validators", type=_tool_list, default=None, help="Comma-separated validator tools."
    )
    run_parser.add_argument(
        "--max-iterations", type=int, default=None, help="Total cycles allowed per spec."
    )
    run_parser.add_argument(
        "--max-iterations-per-run", type=int, default=None, help="Cycles per spec in this run."
    )
    run_parser.add_argument(
        "--lead-permissions",
        type=_csv,
        default=None,
        help="Comma-separated allowed tools for the lead (replaces full permissions).",
    )
    run_parser.add_argument(
        "--sandbox",
        action="store_true",
        default=None,
        help="Run agents inside a container.",
    )
    run_parser.add_argument(
        "--stop-on-failure",
        action="store_true",
        default=None,
        help="Stop the run at the first failed spec.",
    )
    run_parser.add_argument(
        "--no-preflight",
        dest="preflight",
        action="store_false",
        default=None,
        help="Skip the validation-only pass before the first cycle.",
    )
    run_parser.add_argument("--preflight-threshold", type=int, default=None)
    run_parser.add_argument("--preflight-iterations", type=int, default=None)
    run_parser.add_argument(
        "--interactive",
        action="store_true",
        default=None,
        help="Attach agents to this terminal.",
    )
    run_parser.add_argument(
        "--resume", action="store_true", default=False, help="Resume the current session."
    )
    run_parser.add_argument(
        "--start-over",
        action="store_true",
        default=False,
        help="Ignore an unfinished session and start fresh.",
    )
    run_parser.add_argument(
        "--dry-run", action="store_true", default=False, help="List specs and roles, then exit."
    )
    _add_run_shared(run_parser)
    run_parser.set_defaults(handler=_cmd_run)

    # validate -------------------------------------------------------------
    validate_parser = subparsers.add_parser(
        "validate",
        parents=[common],
        help="Validate specs against the code without running a lead",
    )
    _add_run_shared(validate_parser)
    validate_parser.set_defaults(handler=_cmd_validate)

    # tools ----------------------------------------------------------------
    tools_parser = subparsers.add_parser("tools", parents=[common], help="List detected AI tools")
    tools_parser.set_defaults(handler=_cmd_tools)

    # specs ----------------------------------------------------------------
    specs_parser = subparsers.add_parser(
        "specs", parents=[common], help="List specs in run order"
    )
    specs_parser.add_argument("--include", type=_csv, default=None)
    specs_parser.add_argument("--exclude", type=_csv, default=None)
    specs_parser.set_defaults(handler=_cmd_specs)

    # status ---------------------------------------------------------------
    status_parser = subparsers.add_parser(
        "status", parents=[common], help="Show current session status"
    )
    status_parser.add_argument(
        "--full", action="store_true", default=False, help="Show full error text."
    )
    status_parser.set_defaults(handler=_cmd_status)

    # init -----------------------------------------------------------------
    init_parser = subparsers.add_parser(
        "init", parents=[common], help="Create specs/ with an example spec"
    )
    init_parser.add_argument(
        "--force", action="store_true", default=False, help="Replace an existing specs/ directory."
    )
    init_parser.set_defaults(handler=_cmd_init)

    # config ---------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config", parents=[common], help="Print the effective configuration"
    )
    config_parser.set_defaults(handler=_cmd_config)

    # clean ----------------------------------------------------------------
    clean_parser = subparsers.add_parser(
        "clean", parents=[common], help="Remove old reports, logs and sessions"
    )
    clean_parser.add_argument(
        "--older-than",
        type=float,
        default=None,
        metavar="DAYS",
        help="Age limit in days (default: observability.retention_days).",
    )
    clean_parser.add_argument(
        "--all",
        dest="remove_all",
        action="store_true",
        default=False,
        help="Remove the whole state directory.",
    )
    clean_parser.set_defaults(handler=_cmd_clean)

    return parser


def _add_run_shared(sub: argparse.ArgumentParser) -> None:
    sub.add_argument("--timeout", type=float, default=None, help="Per-cycle timeout in minutes.")
    sub.add_argument("--include", type=_csv, default=None, help="Spec globs to include.")
    sub.add_argument("--exclude", type=_csv, default=None, help="Spec globs to exclude.")
    sub.add_argument(
        "--heartbeat",
        type=float,
        default=None,
        help="Seconds between still-running log records (0 disables).",
    )
    sub.add_argument(
        "--yes", "-y", action="store_true", default=False, help="Answer yes to every prompt."
    )


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    configure_structlog()
    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_run(args: argparse.Namespace) -> int:
    working_dir = _working_dir(args)
    config = _load_effective_config(args, working_dir, _run_overrides(args))
    renderer = _get_renderer(args)
    run_cfg = config["run"]
    test_mode = bool(run_cfg["test_mode"])
    store = SessionStore(working_dir)

    clean_state(
        store.paths,
        max_age_days=float(config["observability"]["retention_days"]),
        active_session_id=store.linked_session_id(),
    )

    registry = _require_tools()
    assignment = _initial_roles(registry, config)
    specs = _load_ordered_specs(working_dir, config)

    if args.dry_run:
        _render_dry_run(renderer, specs, assignment)
        return 0

    _confirm_maturity(renderer, specs, assume_yes=args.yes or test_mode)

    session_config = _session_config(config)
    prior = _select_prior_session(args, store, renderer, test_mode=test_mode)
    sandbox = _sandbox_settings(
        config, enabled=prior.config.sandbox if prior is not None else session_config.sandbox
    )
    if sandbox.enabled:
        version = ensure_sandbox_available(sandbox)
        renderer.kv("Sandbox", f"{sandbox.backend.value} ({version})")

    if prior is not None:
        session = _prepare_resumed(store, prior, registry, session_config, renderer)
    else:
        session = store.create(
            [spec.to_entry() for spec in specs],
            assignment.lead,
            assignment.validators,
            session_config,
        )

    _render_start(renderer, working_dir, session, resumed=prior is not None)
    return _execute(args, config, store, session, registry, sandbox, renderer)


def _cmd_validate(args: argparse.Namespace) -> int:
    working_dir = _working_dir(args)
    config = _load_effective_config(args, working_dir, _shared_overrides(args))
    renderer = _get_renderer(args)
    test_mode = bool(config["run"]["test_mode"])
    store = SessionStore(working_dir)

    registry = _require_tools()
    assignment = _initial_roles(registry, config)
    specs = _load_ordered_specs(working_dir, config)
    _confirm_maturity(renderer, specs, assume_yes=args.yes or test_mode)

    session_config = dataclasses.replace(
        _session_config(config),
        max_iterations=1,
        max_iterations_per_run=1,
        preflight=PreflightSettings(enabled=False),
    )
    sandbox = _sandbox_settings(config, enabled=session_config.sandbox)
    if sandbox.enabled:
        ensure_sandbox_available(sandbox)
    session = store.create(
        [spec.to_entry() for spec in specs],
        assignment.lead,
        assignment.validators,
        session_config,
        mode=SessionMode.VALIDATE,
        link=False,
    )
    _render_start(renderer, working_dir, session, resumed=False)
    return _execute(args, config, store, session, registry, sandbox, renderer)


def _cmd_tools(args: argparse.Namespace) -> int:
    renderer = _get_renderer(args)
    registry = detect_tools()
    renderer.tools(registry)
    return 0 if len(registry) else 1


def _cmd_specs(args: argparse.Namespace) -> int:
    working_dir = _working_dir(args)
    config = _load_effective_config(
        args,
        working_dir,
        {"specs.include": args.include, "specs.exclude": args.exclude},
    )
    renderer = _get_renderer(args)
    specs = order_specs(
        load_specs(
            working_dir,
            include=config["specs"]["include"],
            exclude=config["specs"]["exclude"],
        )
    )
    if not specs:
        renderer.text("No specs found.")
        return 0

    session = SessionStore(working_dir).load()
    status_by_path = {spec.path: spec.status.value for spec in session.specs} if session else {}
    rows = [
        [
            str(index),
            spec.file,
            spec.metadata.id,
            spec.metadata.complexity.value,
            str(spec.metadata.maturity),
            "context" if spec.context_only else ", ".join(spec.metadata.depends_on) or "-",
            status_by_path.get(spec.path, "-"),
        ]
        for index, spec in enumerate(specs, start=1)
    ]
    renderer.table(
        ("#", "file", "id", "complexity", "maturity", "depends on", "status"),
        rows,
        title="Specs",
    )
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    working_dir = _working_dir(args)
    renderer = _get_renderer(args)
    store = SessionStore(working_dir)
    session = store.load()
    history = [item for item in store.list_sessions() if session is None or item.id != session.id]
    if session is None and not history:
        renderer.text("No session found.")
        return 0

    if session is not None:
        renderer.session(session, full=args.full)
        if needs_resume(session):
            renderer.next_steps(["speccoord run --resume", "speccoord run --start-over"])

    if history:
        renderer.section("Previous sessions:")
        renderer.table(
            ("session", "mode", "status", "updated", "specs"),
            [
                [
                    item.id,
                    item.mode.value,
                    item.status.value,
                    item.updated_at.isoformat(timespec="seconds"),
                    _specs_summary(item),
                ]
                for item in history
            ],
        )
    return 0


def _cmd_init(args: argparse.Namespace) -> int:
    working_dir = _working_dir(args)
    renderer = _get_renderer(args)
    specs_dir = working_dir / SPECS_DIR
    if specs_dir.exists():
        if not args.force:
            raise CLIError(f"{SPECS_DIR}/ already exists (use --force to replace it)", exit_code=1)
        shutil.rmtree(specs_dir)
    specs_dir.mkdir(parents=True)
    (specs_dir / EXAMPLE_SPEC_NAME).write_text(EXAMPLE_SPEC, encoding="utf-8")
    renderer.ok(f"Initialized {SPECS_DIR}/{EXAMPLE_SPEC_NAME}")
    renderer.next_steps(["speccoord tools", "speccoord run"])
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    working_dir = _working_dir(args)
    config = _load_effective_config(args, working_dir, {})
    renderer = _get_renderer(args)
    renderer.kv("Active profile", args.profile or "(default)")
    print(dump_effective_config(config))
    return 0


def _cmd_clean(args: argparse.Namespace) -> int:
    working_dir = _working_dir(args)
    renderer = _get_renderer(args)
    store = SessionStore(working_dir)
    state_dir = store.paths.state_dir

    if args.remove_all:
        if not state_dir.exists():
            renderer.text("Nothing to clean.")
            return 0
        shutil.rmtree(state_dir)
        renderer.ok(f"Removed {state_dir}")
        return 0

    config = _load_effective_config(args, working_dir, {})
    max_age = args.older_than
    if max_age is None:
        max_age = float(config["observability"]["retention_days"])
    removed = clean_state(
        store.paths, max_age_days=max_age, active_session_id=store.linked_session_id()
    )
    if not removed:
        renderer.text("Nothing to clean.")
        return 0
    renderer.ok(f"Removed {len(removed)} file(s) older than {max_age:g} day(s)")
    if renderer.verbose:
        renderer.items([str(path) for path in removed])
    return 0


# ---------------------------------------------------------------------------
# Run wiring
# ---------------------------------------------------------------------------


def _execute(
    args: argparse.Namespace,
    config: Mapping[str, Any],
    store: SessionStore,
    session: Session,
    registry: ToolRegistry,
    sandbox: SandboxSettings,
    renderer: CLIRenderer,
) -> int:
    handle = setup_logging(
        config["observability"], session_id=session.id, log_dir=store.paths.logs_dir
    )
    try:
        outcome = asyncio.run(_drive(config, store, session, registry, sandbox))
    finally:
        shutdown_logging(handle)

    renderer.section("Result")
    renderer.session(outcome.session, full=args.verbose)
    renderer.kv("Summary", store.paths.reports_dir / f"{session.id}-summary.json")
    renderer.kv("Log", handle.log_path)
    if outcome.interrupted:
        renderer.warning("Interrupted. Session state saved.")
        renderer.next_steps(["speccoord run --resume"])
        return INTERRUPTED_EXIT_STATUS
    if outcome.succeeded:
        return 0
    if session.mode is SessionMode.RUN:
        renderer.next_steps(["speccoord status --full", "speccoord run --resume"])
    return 1


async def _drive(
    config: Mapping[str, Any],
    store: SessionStore,
    session: Session,
    registry: ToolRegistry,
    sandbox: SandboxSettings,
) -> RunOutcome:
    run_cfg = config["run"]
    test_mode = bool(run_cfg["test_mode"])
    context = RunContext(
        grace_seconds=float(config["interrupt"]["grace_seconds"]),
        throttle_seconds=0.0 if test_mode else float(run_cfg["tool_throttle_seconds"]),
        heartbeat_seconds=float(run_cfg["heartbeat_seconds"]),
    )
    context.install_signal_handlers()
    runner = ProcessToolRunner(
        context=context,
        lead_permissions=session.config.lead_permissions,
        sandbox=sandbox,
        interactive=bool(run_cfg["interactive"]),
        stdin_threshold=int(config["prompts"]["stdin_threshold"]),
    )
    orchestrator = CycleOrchestrator(
        session=session,
        store=store,
        runner=runner,
        available=registry.names,
        context=context,
        settings=_orchestrator_settings(config),
    )
    return await orchestrator.run()


def _select_prior_session(
    args: argparse.Namespace,
    store: SessionStore,
    renderer: CLIRenderer,
    *,
    test_mode: bool,
) -> Session | None:
    if args.resume and args.start_over:
        raise CLIError("--resume and --start-over are mutually exclusive", exit_code=2)

    prior = store.load()
    if args.resume:
        if prior is None:
            raise NothingToResumeError(str(store.paths.working_directory))
        return prior
    if prior is None or not needs_resume(prior):
        return None
    if args.start_over:
        store.unlink()
        _logger.info("session_discarded", session_id=prior.id)
        return None

    resume = True
    if not (args.yes or test_mode) and sys.stdin.isatty():
        resume = Confirm.ask(
            f"Unfinished session {prior.id} found. Resume it?",
            console=renderer.console,
            default=True,
        )
    if resume:
        return prior
    store.unlink()
    return None


def _prepare_resumed(
    store: SessionStore,
    session: Session,
    registry: ToolRegistry,
    session_config: SessionConfig,
    renderer: CLIRenderer,
) -> Session:
    assignment, changed = normalize_resumed_roles(session, registry.names)
    if changed:
        renderer.warning(
            f"Roles adjusted to installed tools: lead {assignment.lead.value}, "
            f"validators {', '.join(tool.value for tool in assignment.validators)}"
        )
        assignment.apply_to(session)
    session.config = dataclasses.replace(
        session.config,
        max_iterations=session_config.max_iterations,
        max_iterations_per_run=min(
            session_config.max_iterations_per_run, session_config.max_iterations
        ),
    )
    if session.status is not SessionStatus.IN_PROGRESS:
        session.status = SessionStatus.IN_PROGRESS
    store.persist(session)
    _logger.info("session_resumed", session_id=session.id, index=session.current_spec_index)
    return session


def _require_tools() -> ToolRegistry:
    registry = detect_tools()
    if not len(registry):
        raise NoToolsAvailableError()
    return registry


def _initial_roles(registry: ToolRegistry, config: Mapping[str, Any]) -> RoleAssignment:
    roles = config.get("roles", {})
    lead = roles.get("lead")
    validators = roles.get("validators")
    return assign_roles(
        registry.names,
        lead=ToolName(lead) if lead else None,
        validators=[ToolName(item) for item in validators] if validators else None,
    )


def _load_ordered_specs(working_dir: Path, config: Mapping[str, Any]) -> list[LoadedSpec]:
    loaded = load_specs(
        working_dir,
        include=config["specs"]["include"],
        exclude=config["specs"]["exclude"],
    )
    if not loaded:
        raise PreconditionError(f"No specs found in {working_dir / SPECS_DIR}")
    return order_specs(loaded)


def _confirm_maturity(
    renderer: CLIRenderer, specs: Sequence[LoadedSpec], *, assume_yes: bool
) -> None:
    low = [spec for spec in specs if spec.is_low_maturity]
    if not low:
        return
    for spec in low:
        renderer.warning(
            f"Spec {spec.file} maturity {spec.metadata.maturity} is below recommended minimum (3)."
        )
    if assume_yes or not sys.stdin.isatty():
        return
    if not Confirm.ask("Proceed anyway?", console=renderer.console, default=False):
        raise CLIError("Aborted due to low spec maturity.", exit_code=1)


def _session_config(config: Mapping[str, Any]) -> SessionConfig:
    run_cfg = config["run"]
    preflight = config["preflight"]
    return SessionConfig(
        max_iterations=int(run_cfg["max_iterations"]),
        max_iterations_per_run=int(run_cfg["max_iterations_per_run"]),
        timeout_minutes=float(run_cfg["timeout_minutes"]),
        lead_permissions=tuple(config["permissions"]["lead_allowed_tools"]),
        sandbox=bool(config["sandbox"]["enabled"]),
        stop_on_failure=bool(run_cfg["stop_on_failure"]),
        preflight=PreflightSettings(
            enabled=bool(preflight["enabled"]),
            threshold=int(preflight["threshold"]),
            iterations=int(preflight["iterations"]),
        ),
    )


def _sandbox_settings(config: Mapping[str, Any], *, enabled: bool) -> SandboxSettings:
    sandbox = config["sandbox"]
    return SandboxSettings(enabled=enabled, backend=sandbox["backend"], image=sandbox["image"])


def _orchestrator_settings(config: Mapping[str, Any]) -> OrchestratorSettings:
    prompts = config["prompts"]
    run_cfg = config["run"]
    return OrchestratorSettings(
        prompts=PromptSettings(
            listing_limit=int(prompts["listing_limit"]),
            max_files=int(prompts["max_files"]),
            max_file_bytes=int(prompts["max_file_bytes"]),
            recent_reports=int(prompts["recent_reports"]),
            report_excerpt_chars=int(prompts["report_excerpt_chars"]),
        ),
        rate_limit_cooldown_seconds=(
            0.0 if run_cfg["test_mode"] else float(run_cfg["rate_limit_cooldown_seconds"])
        ),
    )


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _render_dry_run(
    renderer: CLIRenderer, specs: Sequence[LoadedSpec], assignment: RoleAssignment
) -> None:
    renderer.heading("Specs to build:")
    for index, spec in enumerate(specs, start=1):
        suffix = " [context]" if spec.context_only else ""
        renderer.text(
            f"{index}. {spec.file} ({spec.metadata.complexity.value}, "
            f"Level {spec.metadata.maturity}){suffix}"
        )
    renderer.blank()
    renderer.kv("Lead", assignment.lead.value)
    renderer.kv("Validators", ", ".join(tool.value for tool in assignment.validators))


def _render_start(
    renderer: CLIRenderer, working_dir: Path, session: Session, *, resumed: bool
) -> None:
    renderer.heading("spec-coordinator")
    renderer.kv("Working directory", working_dir)
    renderer.kv("Specs directory", working_dir / SPECS_DIR)
    if resumed:
        renderer.kv(
            "Resuming session",
            f"{session.id} at spec {session.current_spec_index + 1}/{len(session.specs)}",
        )
    else:
        renderer.kv("Session", session.id)
    renderer.kv("Mode", session.mode.value)
    renderer.kv("Lead", session.lead.value)
    renderer.kv("Validators", ", ".join(tool.value for tool in session.validators))
    renderer.kv("Specs", len(session.specs))
    renderer.blank()


def _specs_summary(session: Session) -> str:
    counts: dict[str, int] = {}
    for spec in session.specs:
        counts[spec.status.value] = counts.get(spec.status.value, 0) + 1
    return ", ".join(f"{status}={count}" for status, count in sorted(counts.items()))


# ---------------------------------------------------------------------------
# Helpers: config, paths, argument types
# ---------------------------------------------------------------------------


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=args.no_color, verbose=args.verbose)


def _working_dir(args: argparse.Namespace) -> Path:
    candidate = Path(args.working_dir).expanduser().resolve()
    if not candidate.is_dir():
        raise CLIError(f"working directory is not a directory: {candidate}", exit_code=2)
    return candidate


def _load_effective_config(
    args: argparse.Namespace,
    working_dir: Path,
    overrides: Mapping[str, object],
) -> dict[str, Any]:
    cli_overrides = dict(overrides)
    cli_overrides["observability.log_level"] = args.log_level
    try:
        return load_config(
            args.config_path,
            working_directory=working_dir,
            profile=args.profile,
            cli_overrides=cli_overrides,
        )
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _shared_overrides(args: argparse.Namespace) -> dict[str, object]:
    return {
        "run.timeout_minutes": args.timeout,
        "run.heartbeat_seconds": args.heartbeat,
        "specs.include": args.include,
        "specs.exclude": args.exclude,
    }


def _run_overrides(args: argparse.Namespace) -> dict[str, object]:
    overrides = _shared_overrides(args)
    overrides.update(
        {
            "run.max_iterations": args.max_iterations,
            "run.max_iterations_per_run": args.max_iterations_per_run,
            "run.stop_on_failure": args.stop_on_failure,
            "run.interactive": args.interactive,
            "roles.lead": args.lead,
            "roles.validators": (
                [tool.value for tool in args.validators] if args.validators else None
            ),
            "permissions.lead_allowed_tools": args.lead_permissions,
            "sandbox.enabled": args.sandbox,
            "preflight.enabled": args.preflight,
            "preflight.threshold": args.preflight_threshold,
            "preflight.iterations": args.preflight_iterations,
        }
    )
    if args.max_iterations is not None and args.max_iterations_per_run is None:
        overrides["run.max_iterations_per_run"] = args.max_iterations
    return overrides


def _csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _tool_list(value: str) -> list[ToolName]:
    tools: list[ToolName] = []
    for item in _csv(value):
        try:
            tools.append(ToolName(item.lower()))
        except ValueError as exc:
            raise argparse.ArgumentTypeError(
                f"unknown tool {item!r}; expected one of: {', '.join(_TOOL_CHOICES)}"
            ) from exc
    return tools


__all__ = ["CLIError", "build_parser", "run_cli"]
