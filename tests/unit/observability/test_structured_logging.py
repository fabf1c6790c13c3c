"""
spec-coordinator - unit tests for structured logging

Purpose
- Validate JSON-lines output, correlation fields, redaction, and the
  structlog-to-stdlib routing used by every component.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import pytest
import structlog

from spec_coordinator.observability.logging import (
    LoggingConfig,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    get_correlation_context,
    parse_log_level,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


@pytest.mark.unit
def test_structlog_events_land_as_json_lines(tmp_path: Path) -> None:
    handle = setup_logging({"log_level": "INFO"}, session_id="S1", log_dir=tmp_path)
    log = structlog.get_logger("spec_coordinator.orchestration.cycle")

    with correlation_scope(spec_id="auth", cycle=2):
        log.info("cycle_started", tool="claude", attempt=1)
    log.debug("hidden_below_level")
    shutdown_logging(handle)

    assert handle.log_path == tmp_path / "S1" / "coordinator.jsonl"
    records = _read_json_lines(handle.log_path)
    assert len(records) == 1
    record = records[0]
    assert record["event"] == "cycle_started"
    assert record["level"] == "INFO"
    assert record["logger"] == "spec_coordinator.orchestration.cycle"
    assert record["session_id"] == "S1"
    assert record["spec_id"] == "auth"
    assert record["cycle"] == "2"
    assert record["fields"] == {"tool": "claude", "attempt": 1}
    assert str(record["timestamp"]).endswith("Z")


@pytest.mark.unit
def test_secrets_are_redacted_by_default(tmp_path: Path) -> None:
    handle = setup_logging(None, session_id="S2", log_dir=tmp_path)
    log = structlog.get_logger("spec_coordinator.tools.runner")

    log.warning("tool_output", api_key="abc", detail="export token=xyz123 done")
    shutdown_logging(handle)

    fields = _read_json_lines(handle.log_path)[0]["fields"]
    assert fields == {"api_key": "***REDACTED***", "detail": "export token=***REDACTED*** done"}


@pytest.mark.unit
def test_redaction_can_be_disabled(tmp_path: Path) -> None:
    handle = setup_logging({"redact_secrets": False}, session_id="S3", log_dir=tmp_path)

    structlog.get_logger("spec_coordinator").info("raw", password="hunter2")
    shutdown_logging(handle)

    assert _read_json_lines(handle.log_path)[0]["fields"] == {"password": "hunter2"}


@pytest.mark.unit
def test_exceptions_are_rendered(tmp_path: Path) -> None:
    handle = setup_logging(None, session_id="S4", log_dir=tmp_path)
    log = structlog.get_logger("spec_coordinator")

    try:
        raise RuntimeError("boom")
    except RuntimeError:
        log.exception("failed")
    shutdown_logging(handle)

    record = _read_json_lines(handle.log_path)[0]
    assert record["level"] == "ERROR"
    assert "RuntimeError: boom" in json.dumps(record)


@pytest.mark.unit
def test_new_setup_replaces_active_handle(tmp_path: Path) -> None:
    first = setup_logging(None, session_id="A", log_dir=tmp_path)
    second = setup_logging(None, session_id="B", log_dir=tmp_path)

    assert first.is_shutdown
    assert get_active_logging_handle() is second


@pytest.mark.unit
def test_correlation_scope_nests_and_resets() -> None:
    with correlation_scope(session_id="S", spec_id="a"):
        with correlation_scope(spec_id=None, tool="codex"):
            assert get_correlation_context() == {"session_id": "S", "tool": "codex"}
        assert get_correlation_context() == {"session_id": "S", "spec_id": "a"}
    assert get_correlation_context() == {}


@pytest.mark.unit
def test_unknown_correlation_key_is_rejected() -> None:
    with pytest.raises(ValueError, match="unknown correlation key 'user'"):
        with correlation_scope(user="x"):
            pass


@pytest.mark.unit
@pytest.mark.parametrize(
    ("value", "expected"),
    [("info", logging.INFO), (" debug ", logging.DEBUG), (logging.ERROR, logging.ERROR)],
)
def test_parse_log_level(value: int | str, expected: int) -> None:
    assert parse_log_level(value) == expected


@pytest.mark.unit
def test_parse_log_level_rejects_unknown_names() -> None:
    with pytest.raises(ValueError, match="unsupported logging level"):
        parse_log_level("chatty")


@pytest.mark.unit
def test_setup_rejects_bad_config(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="session_id must not be empty"):
        setup_structured_logging(LoggingConfig(session_id=" ", base_log_dir=tmp_path))
    with pytest.raises(ValueError, match="path separators"):
        setup_structured_logging(
            LoggingConfig(session_id="S", base_log_dir=tmp_path, log_filename="a/b.jsonl")
        )


@pytest.mark.unit
def test_default_redactor_scrubs_known_key_shapes() -> None:
    text = "keys sk-ant-abcdefghijklmnop AIza" + "x" * 24 + " Bearer abc.def"

    redacted = default_log_redactor(text)

    assert redacted == "keys ***REDACTED*** ***REDACTED*** Bearer ***REDACTED***"
