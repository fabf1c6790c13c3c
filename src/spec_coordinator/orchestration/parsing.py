"""
spec-coordinator - validator output parsing

Purpose
- Turn an agent's raw output into a :class:`ValidationResult`.

Accepted shapes
- A JSON object carrying ``response_block`` (an object, or a string that is
  itself parsed again).
- A bare verdict object (``completeness``/``status``/``findings``/
  ``recommendations``).
- A transport envelope from the agent CLI (``result``, ``content``, ``text``,
  ``response``, ``message``, ``item``) wrapping any of the above.
- Any of the above after a prose preamble, inside a code fence, or as one
  line of a JSON-lines stream (the last usable object wins).
- The legacy ``COMPLETENESS:`` / ``STATUS:`` / ``GAPS:`` / ``RECOMMENDATIONS:``
  labelled block.

Detectors run in priority order and never raise: each returns a result, an
explicit rejection naming what was wrong, or ``None`` when the input is not in
its format. Only :func:`parse_validation_output` raises.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Final

from spec_coordinator.domain.models import ValidationResult, VerdictStatus
from spec_coordinator.errors import ValidationParseError

# Envelope -> response_block string -> labelled text is the deepest real shape.
_MAX_DEPTH: Final[int] = 3
_ENVELOPE_TEXT_KEYS: Final[tuple[str, ...]] = ("result", "content", "text", "response")
_ENVELOPE_NESTED_KEYS: Final[tuple[str, ...]] = ("message", "item")
_VERDICT_KEYS: Final[frozenset[str]] = frozenset({"completeness", "status"})

_COMPLETENESS_RE: Final[re.Pattern[str]] = re.compile(r"COMPLETENESS:\s*(\d{1,3})\s*%?", re.I)
_STATUS_RE: Final[re.Pattern[str]] = re.compile(r"STATUS:\s*(PASS|FAIL)\b", re.I)
_BULLET_RE: Final[re.Pattern[str]] = re.compile(r"^\s*[-*•]\s+(.*)")
_TEMPLATE_MARKER: Final[str] = "response format:"


@dataclass(frozen=True, slots=True)
class _Rejected:
    reason: str


_Outcome = ValidationResult | _Rejected | None
_Detector = Callable[[str, int], _Outcome]


def parse_validation_output(output: str) -> ValidationResult:
    """Parse ``output`` or raise :class:`ValidationParseError` naming the problem."""

    outcome = _run_detectors(output, 0)
    if isinstance(outcome, ValidationResult):
        return outcome
    if isinstance(outcome, _Rejected):
        reason = outcome.reason
    elif not output.strip():
        reason = "output was empty"
    else:
        reason = "no JSON verdict or COMPLETENESS/STATUS block found"
    raise ValidationParseError(f"Validator output missing required response format: {reason}")


def format_finding(finding: object) -> str:
    """Flatten one structured finding into a single gap line."""

    if isinstance(finding, str):
        return finding.strip()
    if not isinstance(finding, Mapping):
        return ""
    requirement = _first_text(finding, "spec_requirement", "requirement")
    gap = _first_text(finding, "gap_description", "gap", "description")
    original = _first_text(finding, "original_code", "original", "original_snippet")
    proposed = _first_text(finding, "proposed_diff", "proposed_change", "proposed")
    parts = [
        f"Requirement: {requirement}" if requirement else "",
        f"Gap: {gap}" if gap else "",
        f"Original: {original}" if original else "Original: (missing)",
        f"Proposed diff: {proposed}" if proposed else "Proposed diff: (missing)",
    ]
    return " | ".join(part for part in parts if part)


def extract_bullets(text: str, section: str) -> list[str]:
    """Bullet items following ``section`` up to the next unindented non-bullet line."""

    index = text.upper().find(section.upper())
    if index == -1:
        return []
    items: list[str] = []
    for line in text[index:].splitlines()[1:]:
        match = _BULLET_RE.match(line)
        if match:
            item = match.group(1).strip()
            if item:
                items.append(item)
        elif line.strip() and not line.startswith((" ", "\t")):
            break
    return items


def _run_detectors(text: str, depth: int) -> _Outcome:
    first_rejection: _Rejected | None = None
    for detector in _DETECTORS:
        outcome = detector(text, depth)
        if isinstance(outcome, ValidationResult):
            return outcome
        if isinstance(outcome, _Rejected) and first_rejection is None:
            first_rejection = outcome
    return first_rejection


def _detect_json(text: str, depth: int) -> _Outcome:
    candidates = _json_objects(text)
    if not candidates:
        return None
    rejection: _Rejected | None = None
    for candidate in reversed(candidates):
        outcome = _interpret_object(candidate, depth)
        if isinstance(outcome, ValidationResult):
            return outcome
        if isinstance(outcome, _Rejected) and rejection is None:
            rejection = outcome
    return rejection


def _detect_labelled_text(text: str, depth: int) -> _Outcome:
    del depth
    if _is_json_document(text):
        return None
    cleaned = _strip_response_template(text)
    completeness_match = _COMPLETENESS_RE.search(cleaned)
    status_match = _STATUS_RE.search(cleaned)
    if completeness_match is None and status_match is None:
        return None
    if completeness_match is None:
        return _Rejected('labelled block missing "COMPLETENESS" line')
    if status_match is None:
        return _Rejected('labelled block missing "STATUS" line (expected PASS or FAIL)')
    return ValidationResult(
        completeness=min(100, int(completeness_match.group(1))),
        status=VerdictStatus(status_match.group(1).upper()),
        gaps=tuple(extract_bullets(cleaned, "GAPS:")),
        recommendations=tuple(extract_bullets(cleaned, "RECOMMENDATIONS:")),
    )


_DETECTORS: Final[tuple[_Detector, ...]] = (_detect_json, _detect_labelled_text)


def _interpret_object(record: dict[str, object], depth: int) -> _Outcome:
    if "response_block" in record:
        block = record["response_block"]
        if isinstance(block, Mapping):
            return _structured_result(block, "response_block")
        if isinstance(block, str):
            if depth >= _MAX_DEPTH:
                return _Rejected("response_block nested too deeply")
            inner = _run_detectors(block, depth + 1)
            if inner is None:
                return _Rejected(
                    "response_block text has no JSON verdict or COMPLETENESS/STATUS block"
                )
            return inner
        return _Rejected(
            f'"response_block" must be a string or object, got {type(block).__name__}'
        )

    if _VERDICT_KEYS & record.keys():
        return _structured_result(record, "verdict")

    unwrapped = _unwrap_envelope(record)
    if unwrapped is None or depth >= _MAX_DEPTH:
        return None
    return _run_detectors(unwrapped, depth + 1)


def _structured_result(record: Mapping[str, object], label: str) -> _Outcome:
    available = ", ".join(sorted(str(key) for key in record)) or "none"

    if "completeness" not in record:
        return _Rejected(f'{label} missing "completeness" field (available fields: {available})')
    completeness = record["completeness"]
    if (
        isinstance(completeness, bool)
        or not isinstance(completeness, (int, float))
        or not math.isfinite(completeness)
    ):
        return _Rejected(
            f'{label} field "completeness" must be a number, got {type(completeness).__name__}'
        )

    if "status" not in record:
        return _Rejected(f'{label} missing "status" field (available fields: {available})')
    status = record["status"]
    if status not in (VerdictStatus.PASS.value, VerdictStatus.FAIL.value):
        return _Rejected(f'{label} field "status" must be exactly PASS or FAIL, got {status!r}')

    findings_key = "findings" if "findings" in record else "gaps" if "gaps" in record else None
    if findings_key is None:
        return _Rejected(f'{label} missing "findings" field (available fields: {available})')
    findings = record[findings_key]
    if not isinstance(findings, list):
        return _Rejected(
            f'{label} field "{findings_key}" must be a list, got {type(findings).__name__}'
        )

    if "recommendations" not in record:
        return _Rejected(
            f'{label} missing "recommendations" field (available fields: {available})'
        )
    recommendations = record["recommendations"]
    if not isinstance(recommendations, list):
        return _Rejected(
            f'{label} field "recommendations" must be a list, '
            f"got {type(recommendations).__name__}"
        )

    gaps = tuple(gap for gap in (format_finding(item) for item in findings) if gap)
    return ValidationResult(
        completeness=int(round(min(100.0, max(0.0, float(completeness))))),
        status=VerdictStatus(status),
        gaps=gaps,
        recommendations=tuple(
            item.strip() for item in recommendations if isinstance(item, str) and item.strip()
        ),
    )


def _unwrap_envelope(record: Mapping[str, object]) -> str | None:
    for key in _ENVELOPE_TEXT_KEYS:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value
        if isinstance(value, list):
            text = _join_text_blocks(value)
            if text:
                return text
    for key in _ENVELOPE_NESTED_KEYS:
        value = record.get(key)
        if isinstance(value, Mapping):
            nested = _unwrap_envelope(value)
            if nested is not None:
                return nested
    return None


def _join_text_blocks(blocks: list[object]) -> str:
    texts: list[str] = []
    for block in blocks:
        if isinstance(block, str):
            texts.append(block)
        elif isinstance(block, Mapping) and isinstance(block.get("text"), str):
            texts.append(str(block["text"]))
    return "".join(texts).strip()


def _json_objects(text: str) -> list[dict[str, object]]:
    """Every top-level JSON object embedded in ``text``, in order of appearance."""

    decoder = json.JSONDecoder()
    objects: list[dict[str, object]] = []
    index = 0
    while True:
        start = text.find("{", index)
        if start == -1:
            return objects
        try:
            value, end = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            index = start + 1
            continue
        if isinstance(value, dict):
            objects.append(value)
        index = end


def _is_json_document(text: str) -> bool:
    stripped = text.strip()
    if not stripped.startswith("{"):
        return False
    try:
        json.loads(stripped)
    except json.JSONDecodeError:
        return False
    return True


def _strip_response_template(text: str) -> str:
    index = text.lower().find(_TEMPLATE_MARKER)
    if index == -1:
        return text
    return text[:index].strip()


def _first_text(record: Mapping[str, object], *keys: str) -> str:
    for key in keys:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


__all__ = ["extract_bullets", "format_finding", "parse_validation_output"]
