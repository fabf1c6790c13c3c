"""Run the validator panel for one cycle and turn its output into verdicts."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Final

import structlog

from spec_coordinator.domain.models import ToolName, Validation, ValidationResult, VerdictStatus
from spec_coordinator.errors import ValidationParseError
from spec_coordinator.orchestration.parsing import parse_validation_output
from spec_coordinator.orchestration.prompts import build_format_recovery_prompt
from spec_coordinator.tools.runner import ToolRunner

RERUN_RECOMMENDATION: Final[str] = (
    "Re-run validator or inspect logs for tool output formatting issues."
)

_logger = structlog.get_logger(__name__)


def invalid_output_result(message: str) -> ValidationResult:
    """The FAIL verdict recorded for a validator whose output never parsed."""

    return ValidationResult(
        completeness=0,
        status=VerdictStatus.FAIL,
        gaps=(f"Validator output invalid after retry: {message}",),
        recommendations=(RERUN_RECOMMENDATION,),
    )


async def run_validator(
    runner: ToolRunner,
    tool: ToolName,
    prompt: str,
    cwd: Path,
    timeout_seconds: float,
    *,
    logger: Any | None = None,
) -> Validation:
    """
    Run one validator, retrying once with a format-recovery prompt.

    Never raises on malformed output: the second parse failure becomes a
    synthetic FAIL verdict so the cycle can still reach a decision.
    """

    log = logger if logger is not None else _logger
    result = await runner.run_validator(tool, prompt, cwd, timeout_seconds)
    try:
        verdict = parse_validation_output(result.output)
    except ValidationParseError as first_error:
        log.warning(
            "validator_output_unparsed",
            tool=tool.value,
            attempt=1,
            exit_code=result.exit_code,
            error=str(first_error),
        )
    else:
        return _validation(tool, prompt, result.output, verdict, result.duration_ms, result.exit_code)

    recovery_prompt = build_format_recovery_prompt(prompt)
    retry = await runner.run_validator(tool, recovery_prompt, cwd, timeout_seconds)
    duration_ms = result.duration_ms + retry.duration_ms
    try:
        verdict = parse_validation_output(retry.output)
    except ValidationParseError as second_error:
        log.error(
            "validator_output_invalid",
            tool=tool.value,
            attempt=2,
            exit_code=retry.exit_code,
            error=str(second_error),
        )
        verdict = invalid_output_result(str(second_error))
    return _validation(tool, recovery_prompt, retry.output, verdict, duration_ms, retry.exit_code)


async def validate_all(
    runner: ToolRunner,
    validators: Sequence[ToolName],
    prompt: str,
    cwd: Path,
    timeout_seconds: float,
    *,
    logger: Any | None = None,
) -> list[Validation]:
    """Run every validator concurrently; results keep the order of ``validators``."""

    return list(
        await asyncio.gather(
            *(
                run_validator(runner, tool, prompt, cwd, timeout_seconds, logger=logger)
                for tool in validators
            )
        )
    )


def _validation(
    tool: ToolName,
    prompt: str,
    output: str,
    verdict: ValidationResult,
    duration_ms: int,
    exit_code: int,
) -> Validation:
    return Validation(
        tool=tool,
        prompt=prompt,
        output=output,
        result=verdict,
        duration_ms=duration_ms,
        exit_code=exit_code,
    )


__all__ = ["RERUN_RECOMMENDATION", "invalid_output_result", "run_validator", "validate_all"]
