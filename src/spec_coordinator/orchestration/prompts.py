"""Prompt construction for lead, validator and format-recovery invocations."""

from __future__ import annotations

import os
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from spec_coordinator.constants import IGNORED_DIR_NAMES, SPECS_DIR
from spec_coordinator.utils.fs import looks_like_text

_VALIDATION_EXCLUDED_DIRS: Final[frozenset[str]] = IGNORED_DIR_NAMES | {str(SPECS_DIR), "data"}

VERDICT_CONTRACT: Final[str] = """\
STRICT OUTPUT REQUIRED: return ONLY one JSON object with exactly one key, "response_block".
Its value must be an object of this shape:
{
  "completeness": <integer 0-100>,
  "status": "PASS" | "FAIL",
  "findings": [
    {
      "spec_requirement": "<requirement text>",
      "gap_description": "<what is missing or wrong>",
      "original_code": "<current snippet, or empty>",
      "proposed_diff": "<concrete change>"
    }
  ],
  "recommendations": ["<recommendation>"]
}
No prose, no markdown, no code fences."""

FORMAT_RECOVERY_NOTICE: Final[str] = (
    "FORMAT RECOVERY: your previous reply could not be parsed. Return ONLY a JSON object "
    'with the single key "response_block" whose value carries "completeness", "status", '
    '"findings" and "recommendations" exactly as specified above.'
)


@dataclass(frozen=True, slots=True)
class PromptSettings:
    listing_limit: int = 50
    max_files: int = 100
    max_file_bytes: int = 50_000
    recent_reports: int = 6
    report_excerpt_chars: int = 8_000


@dataclass(frozen=True, slots=True)
class ReportExcerpt:
    name: str
    text: str


def list_project_files(
    root: Path,
    *,
    limit: int,
    excluded_dirs: frozenset[str] = IGNORED_DIR_NAMES,
) -> list[Path]:
    """Files under ``root`` in deterministic walk order, at most ``limit``."""

    found: list[Path] = []
    if limit <= 0:
        return found
    for current, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(name for name in dirnames if name not in excluded_dirs)
        for filename in sorted(filenames):
            found.append(Path(current) / filename)
            if len(found) >= limit:
                return found
    return found


def has_project_files(root: Path) -> bool:
    """True when the working directory holds anything besides specs and state."""

    return bool(list_project_files(root, limit=1, excluded_dirs=_VALIDATION_EXCLUDED_DIRS))


def directory_listing(root: Path, settings: PromptSettings) -> list[str]:
    return [
        path.relative_to(root).as_posix()
        for path in list_project_files(root, limit=settings.listing_limit)
    ]


def read_codebase(root: Path, settings: PromptSettings) -> str:
    """Concatenate text files for validators, skipping oversized or binary ones."""

    chunks: list[str] = []
    for path in list_project_files(
        root, limit=settings.max_files, excluded_dirs=_VALIDATION_EXCLUDED_DIRS
    ):
        try:
            if path.stat().st_size > settings.max_file_bytes:
                continue
        except OSError:
            continue
        if not looks_like_text(path):
            continue
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            continue
        chunks.append(f"# {path.relative_to(root).as_posix()}\n{content}")
    return "\n\n".join(chunks)


def context_hint(context_docs: Sequence[str]) -> str:
    if context_docs:
        names = ", ".join(f"specs/{name}" for name in context_docs)
        return f"System/architecture context specs to consult: {names}."
    return "Use any relevant supporting specs in the specs directory for context."


def build_lead_prompt(
    *,
    spec_file: str,
    spec_content: str,
    context_docs: Sequence[str] = (),
    feedback: Sequence[str] = (),
    listing: Sequence[str] = (),
    previous_reports: Sequence[str] = (),
    report_excerpts: Sequence[ReportExcerpt] = (),
) -> str:
    sections: list[str] = []
    if feedback:
        sections.append(
            "You are continuing an implementation based on validator feedback.\n\n"
            f"Target spec: specs/{spec_file}\n\n"
            "Instructions:\n"
            "1. Re-read the target spec and any supporting context specs.\n"
            "2. Read the existing codebase before changing it.\n"
            "3. Resolve every gap listed below with concrete code changes.\n"
            "4. Leave features that already meet the spec alone unless a gap requires it.\n"
            "5. Explain significant implementation decisions."
        )
    else:
        sections.append(
            "You are implementing a feature defined in the project specs.\n\n"
            f"Target spec: specs/{spec_file}\n\n"
            "Instructions:\n"
            "1. Read the target spec and any supporting context specs.\n"
            "2. Implement its requirements end to end.\n"
            "3. Follow the acceptance criteria precisely.\n"
            "4. Review earlier reports and avoid repeating known issues.\n"
            "5. Explain significant implementation decisions."
        )
    sections.append(context_hint(context_docs))
    sections.append(f"SPEC CONTENT:\n{spec_content.strip()}")
    if previous_reports:
        sections.append(
            "Previous validation reports:\n" + "\n".join(f"- {item}" for item in previous_reports)
        )
    if report_excerpts:
        sections.append(
            "PREVIOUS REPORT CONTENT (most recent first):\n"
            + "\n\n".join(f"## {item.name}\n{item.text}" for item in report_excerpts)
        )
    sections.append(
        "CURRENT CODEBASE STATE (file listing):\n"
        + ("\n".join(listing) if listing else "(no files yet)")
    )
    if feedback:
        sections.append("VALIDATOR GAPS TO RESOLVE:\n" + "\n".join(feedback))
    return "\n\n".join(sections)


def build_validation_prompt(
    *,
    spec_file: str,
    spec_content: str,
    codebase: str,
    context_docs: Sequence[str] = (),
) -> str:
    return "\n\n".join(
        (
            "You are validating an implementation against its specification.\n\n"
            f"Target spec: specs/{spec_file}\n\n"
            "Act as a strict reviewer: look for edge cases, type holes, exception paths, "
            "security issues and behavior mismatches. Propose a concrete diff for each finding.",
            "Instructions:\n"
            "1. Read the target spec and any supporting context specs.\n"
            "2. Read the implementation thoroughly.\n"
            "3. Compare it against every requirement in the spec.\n"
            "4. Rate completeness from 0 to 100.\n"
            '5. Answer "PASS" only if the spec is fully implemented.',
            context_hint(context_docs),
            f"SPEC CONTENT:\n{spec_content.strip()}",
            "IMPLEMENTATION (current codebase):\n" + (codebase or "(no readable files)"),
            VERDICT_CONTRACT,
        )
    )


def build_format_recovery_prompt(prompt: str) -> str:
    return f"{prompt}\n\n{FORMAT_RECOVERY_NOTICE}"


__all__ = [
    "FORMAT_RECOVERY_NOTICE",
    "PromptSettings",
    "ReportExcerpt",
    "VERDICT_CONTRACT",
    "build_format_recovery_prompt",
    "build_lead_prompt",
    "build_validation_prompt",
    "context_hint",
    "directory_listing",
    "has_project_files",
    "list_project_files",
    "read_codebase",
]
