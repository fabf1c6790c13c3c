"""Lead invocation policy: one retry, rate-limit fallback across tools."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

import structlog

from spec_coordinator.constants import INTERRUPTED_EXIT_STATUS
from spec_coordinator.domain.models import ToolName
from spec_coordinator.errors import FallbackExhaustedError, LeadExecutionError, LeadRateLimitError
from spec_coordinator.tools.roles import RoleAssignment
from spec_coordinator.tools.runner import ExecutionResult, ToolRunner
from spec_coordinator.utils.concurrency import sleep_unless_cancelled

if TYPE_CHECKING:
    from spec_coordinator.orchestration.context import RunContext

RATE_LIMIT_PHRASES: Final[tuple[str, ...]] = (
    "limit reached",
    "rate limit",
    "rate-limit",
    "quota",
    "too many requests",
)
# A successful run with a long transcript is real work, not a quota notice.
_RATE_LIMIT_SCAN_LIMIT: Final[int] = 2_000
_ERROR_EXCERPT_CHARS: Final[int] = 500

_logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class LeadOutcome:
    tool: ToolName
    result: ExecutionResult
    assignment: RoleAssignment


def is_rate_limited(result: ExecutionResult) -> bool:
    if result.exit_code == 0 and len(result.output) > _RATE_LIMIT_SCAN_LIMIT:
        return False
    lowered = result.output.lower()
    return any(phrase in lowered for phrase in RATE_LIMIT_PHRASES)


def fallback_chain(current: ToolName, available: Sequence[ToolName]) -> list[ToolName]:
    """Current lead first, then every other available tool in registry order."""

    return list(dict.fromkeys([current, *available]))


async def run_lead_with_retry(
    runner: ToolRunner,
    tool: ToolName,
    prompt: str,
    cwd: Path,
    timeout_seconds: float,
    *,
    context: RunContext | None = None,
    logger: Any | None = None,
) -> ExecutionResult:
    """
    Run the lead once, retrying a single time on a non-zero exit.

    Raises :class:`LeadRateLimitError` as soon as either attempt looks
    rate-limited, and :class:`LeadExecutionError` when the retry also fails
    with output. A retry that fails with no output at all is returned so the
    caller can report it as an empty-output failure.
    """

    log = logger if logger is not None else _logger
    first = await runner.run_lead(tool, prompt, cwd, timeout_seconds)
    if is_rate_limited(first):
        raise LeadRateLimitError(tool, _excerpt(first.output))
    if first.exit_code == 0 or (context is not None and context.interrupted):
        return first

    log.warning(
        "lead_attempt_failed",
        tool=tool.value,
        attempt=1,
        exit_code=first.exit_code,
        output_excerpt=_excerpt(first.output),
    )
    second = await runner.run_lead(tool, prompt, cwd, timeout_seconds)
    if is_rate_limited(second):
        raise LeadRateLimitError(tool, _excerpt(second.output))
    if second.exit_code == 0 or (context is not None and context.interrupted):
        return second
    if not second.output.strip():
        return second

    raise LeadExecutionError(
        f"Lead execution failed after retry: {tool.value}\n"
        f"Exit code: {second.exit_code}\n"
        f"Error output:\n{_excerpt(second.output)}",
        tool=tool,
        exit_code=second.exit_code,
    )


async def run_lead_with_fallback(
    runner: ToolRunner,
    assignment: RoleAssignment,
    available: Sequence[ToolName],
    prompt: str,
    cwd: Path,
    timeout_seconds: float,
    *,
    on_reassign: Callable[[RoleAssignment], None],
    cooldown_seconds: float = 0.0,
    context: RunContext | None = None,
    logger: Any | None = None,
) -> LeadOutcome:
    """Walk the fallback chain until one lead answers without a rate limit.

    ``on_reassign`` is called with every new assignment before the next tool
    runs, so the caller can persist it.
    """

    log = logger if logger is not None else _logger
    chain = fallback_chain(assignment.lead, available)
    current = assignment
    attempted: list[ToolName] = []

    for index, tool in enumerate(chain):
        if tool != current.lead:
            previous = current.lead
            current = current.with_lead(tool, available)
            on_reassign(current)
            log.warning(
                "lead_reassigned",
                previous=previous.value,
                lead=current.lead.value,
                validators=[item.value for item in current.validators],
            )
        attempted.append(tool)
        try:
            result = await run_lead_with_retry(
                runner, tool, prompt, cwd, timeout_seconds, context=context, logger=log
            )
        except LeadRateLimitError as exc:
            log.warning("lead_rate_limited", tool=tool.value, excerpt=exc.excerpt)
            if index == len(chain) - 1:
                break
            if context is not None:
                cooled = await context.cooldown(cooldown_seconds)
            else:
                cooled = await sleep_unless_cancelled(cooldown_seconds, None)
            if not cooled:
                interrupted = ExecutionResult(
                    "Interrupted during rate-limit cooldown.", INTERRUPTED_EXIT_STATUS, 0
                )
                return LeadOutcome(tool=tool, result=interrupted, assignment=current)
            continue
        return LeadOutcome(tool=tool, result=result, assignment=current)

    raise FallbackExhaustedError(attempted)


def _excerpt(output: str) -> str:
    text = output.strip()
    if len(text) <= _ERROR_EXCERPT_CHARS:
        return text
    return text[:_ERROR_EXCERPT_CHARS] + "..."


__all__ = [
    "LeadOutcome",
    "RATE_LIMIT_PHRASES",
    "fallback_chain",
    "is_rate_limited",
    "run_lead_with_fallback",
    "run_lead_with_retry",
]
