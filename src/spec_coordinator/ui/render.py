"""Console rendering for the speccoord CLI.

Respects ``NO_COLOR`` and ``--no-color``; output is plain when stdout is not a
terminal so piped output stays greppable.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, Final

from rich.console import Console
from rich.table import Table

from spec_coordinator.domain.models import SessionStatus, SpecStatus, ToolName

if TYPE_CHECKING:
    from collections.abc import Sequence

    from spec_coordinator.domain.models import Session
    from spec_coordinator.tools.detection import ToolRegistry

_STATUS_STYLES: Final[dict[str, str]] = {
    SpecStatus.COMPLETED.value: "green",
    SpecStatus.SKIPPED.value: "yellow",
    SpecStatus.FAILED.value: "red",
    SpecStatus.IN_PROGRESS.value: "cyan",
    SpecStatus.PENDING.value: "dim",
    SessionStatus.PARTIAL.value: "yellow",
    SessionStatus.ABANDONED.value: "dim",
    "ready": "green",
    "not found": "red",
}


def _color_allowed(no_color_flag: bool) -> bool:
    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


class CLIRenderer:
    """Thin console renderer over ``rich``."""

    def __init__(
        self,
        *,
        no_color: bool = False,
        verbose: bool = False,
        console: Console | None = None,
    ) -> None:
        self.verbose = verbose
        color = _color_allowed(no_color)
        self.console = console or Console(
            no_color=not color, highlight=False, soft_wrap=not color
        )
        self.errors = Console(stderr=True, no_color=not color, highlight=False)

    def heading(self, text: str) -> None:
        self.console.print(text, style="bold", markup=False)

    def kv(self, key: str, value: object) -> None:
        self.console.print(f"{key}: {value}", markup=False)

    def text(self, line: str) -> None:
        self.console.print(line, markup=False)

    def blank(self) -> None:
        self.console.print()

    def section(self, title: str) -> None:
        self.console.print()
        self.console.print(title, style="bold", markup=False)

    def warning(self, text: str) -> None:
        self.errors.print(f"Warning: {text}", style="yellow", markup=False)

    def error(self, text: str) -> None:
        self.errors.print(f"error: {text}", style="red", markup=False)

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self.console.print(f"  {prefix}{entry}", markup=False)

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        if not rows:
            return
        table = Table(title=title, show_edge=False, title_justify="left")
        for header in headers:
            table.add_column(header)
        for row in rows:
            table.add_row(*(self._styled(str(cell)) for cell in row))
        self.console.print(table)

    def next_steps(self, steps: Sequence[str]) -> None:
        if not steps:
            return
        self.section("Next steps:")
        for step in steps:
            self.console.print(f"  $ {step}", markup=False)

    def ok(self, label: str) -> None:
        self.console.print(f"  OK    {label}", style="green", markup=False)

    def fail(self, label: str) -> None:
        self.console.print(f"  FAIL  {label}", style="red", markup=False)

    def tools(self, registry: ToolRegistry) -> None:
        rows: list[list[str]] = []
        for name in ToolName:
            info = registry.get(name)
            if info is None:
                rows.append([name.value, "-", "-", "not found"])
            else:
                rows.append([name.value, info.path, info.version or "unknown", "ready"])
        self.table(("tool", "path", "version", "status"), rows, title="AI tools")
        if not len(registry):
            self.warning("No AI tools detected.")

    def session(self, session: Session, *, full: bool = False) -> None:
        self.kv("Session", session.id)
        self.kv("Mode", session.mode.value)
        self.kv("Status", session.status.value)
        self.kv("Lead", session.lead.value)
        self.kv("Validators", ", ".join(tool.value for tool in session.validators))
        self.kv("Progress", f"{session.current_spec_index}/{len(session.specs)}")
        rows: list[list[str]] = []
        for spec in session.specs:
            last = spec.cycles[-1] if spec.cycles else None
            verdicts = (
                ", ".join(
                    f"{item.tool.value}={item.result.status.value}({item.result.completeness}%)"
                    for item in last.validations
                )
                if last is not None
                else "-"
            )
            rows.append(
                [
                    spec.file,
                    spec.status.value,
                    str(len(spec.cycles)),
                    verdicts,
                    spec.last_error or "" if full else _truncate(spec.last_error or "", 60),
                ]
            )
        self.table(("spec", "status", "cycles", "last verdicts", "error"), rows, title="Specs")

    def _styled(self, cell: str) -> str:
        style = _STATUS_STYLES.get(cell)
        if style is None:
            return cell.replace("[", "\\[")
        return f"[{style}]{cell}[/{style}]"


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(no_color=no_color, verbose=verbose)


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


__all__ = ["CLIRenderer", "create_renderer"]
