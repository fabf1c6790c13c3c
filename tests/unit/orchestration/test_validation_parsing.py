"""Unit tests for validator output parsing."""

from __future__ import annotations

import json

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from spec_coordinator.domain.models import VerdictStatus
from spec_coordinator.errors import ValidationParseError
from spec_coordinator.orchestration.parsing import (
    extract_bullets,
    format_finding,
    parse_validation_output,
)

_VERDICT = {
    "completeness": 72,
    "status": "FAIL",
    "findings": ["Login endpoint missing rate limiting"],
    "recommendations": ["Add a limiter to POST /login"],
}


def _expected_gaps() -> tuple[str, ...]:
    return ("Login endpoint missing rate limiting",)


@pytest.mark.unit
@pytest.mark.parametrize(
    "output",
    [
        json.dumps(_VERDICT),
        json.dumps({"response_block": _VERDICT}),
        json.dumps({"response_block": json.dumps(_VERDICT)}),
        json.dumps({"type": "result", "result": json.dumps(_VERDICT)}),
        json.dumps({"content": [{"type": "text", "text": json.dumps(_VERDICT)}]}),
        json.dumps({"message": {"content": json.dumps({"response_block": _VERDICT})}}),
        json.dumps({"item": {"text": json.dumps(_VERDICT)}}),
        "Here is my review:\n```json\n" + json.dumps(_VERDICT) + "\n```\n",
        '{"type": "thread.started"}\n' + json.dumps({"item": {"text": json.dumps(_VERDICT)}}),
    ],
    ids=[
        "bare",
        "response-block-object",
        "response-block-string",
        "result-envelope",
        "content-blocks",
        "nested-message",
        "item-envelope",
        "fenced-after-prose",
        "json-lines",
    ],
)
def test_every_supported_shape_yields_the_same_verdict(output: str) -> None:
    result = parse_validation_output(output)

    assert result.completeness == 72
    assert result.status is VerdictStatus.FAIL
    assert result.gaps == _expected_gaps()
    assert result.recommendations == ("Add a limiter to POST /login",)


@pytest.mark.unit
def test_legacy_labelled_block() -> None:
    output = (
        "COMPLETENESS: 85%\n"
        "STATUS: PASS\n"
        "GAPS:\n"
        "- Minor docs gap\n"
        "RECOMMENDATIONS:\n"
        "- Document the flag\n"
    )

    result = parse_validation_output(output)

    assert result.completeness == 85
    assert result.passed
    assert result.gaps == ("Minor docs gap",)
    assert result.recommendations == ("Document the flag",)


@pytest.mark.unit
def test_missing_status_names_the_field() -> None:
    payload = {key: value for key, value in _VERDICT.items() if key != "status"}

    with pytest.raises(ValidationParseError) as excinfo:
        parse_validation_output(json.dumps(payload))

    message = str(excinfo.value)
    assert message.startswith("Validator output missing required response format")
    assert '"status"' in message
    assert "completeness" in message


@pytest.mark.unit
@pytest.mark.parametrize(
    ("payload", "fragment"),
    [
        ({**_VERDICT, "status": "pass"}, "exactly PASS or FAIL"),
        ({**_VERDICT, "completeness": "high"}, '"completeness" must be a number'),
        ({**_VERDICT, "findings": "none"}, '"findings" must be a list'),
        ({"completeness": 10, "status": "PASS", "findings": []}, '"recommendations"'),
        ({"response_block": 5}, "must be a string or object"),
    ],
)
def test_malformed_verdicts_explain_themselves(payload: dict[str, object], fragment: str) -> None:
    with pytest.raises(ValidationParseError, match=fragment):
        parse_validation_output(json.dumps(payload))


@pytest.mark.unit
@pytest.mark.parametrize("output", ["", "   ", "I looked at the code and it seems fine."])
def test_unstructured_output_is_rejected(output: str) -> None:
    with pytest.raises(ValidationParseError, match="missing required response format"):
        parse_validation_output(output)


@pytest.mark.unit
def test_completeness_is_clamped_and_rounded() -> None:
    result = parse_validation_output(json.dumps({**_VERDICT, "completeness": 140.6}))

    assert result.completeness == 100


@pytest.mark.unit
def test_structured_findings_are_flattened() -> None:
    finding = {
        "spec_requirement": "R1",
        "gap_description": "not implemented",
        "proposed_diff": "+ add handler",
    }

    line = format_finding(finding)

    assert line == (
        "Requirement: R1 | Gap: not implemented | Original: (missing) | "
        "Proposed diff: + add handler"
    )
    result = parse_validation_output(json.dumps({**_VERDICT, "findings": [finding, ""]}))
    assert result.gaps == (line,)


@pytest.mark.unit
def test_extract_bullets_stops_at_next_section() -> None:
    text = "GAPS:\n- one\n* two\nRECOMMENDATIONS:\n- three\n"

    assert extract_bullets(text, "GAPS:") == ["one", "two"]
    assert extract_bullets(text, "MISSING:") == []


@pytest.mark.unit
@settings(max_examples=50, deadline=None)
@given(st.text(max_size=200))
def test_parsing_is_deterministic(output: str) -> None:
    def attempt() -> object:
        try:
            return parse_validation_output(output)
        except ValidationParseError as exc:
            return str(exc)

    assert attempt() == attempt()
