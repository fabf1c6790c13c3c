"""UI package exports for the CLI and console rendering."""

from spec_coordinator.ui.cli import CLIError, build_parser, run_cli
from spec_coordinator.ui.render import CLIRenderer, create_renderer

__all__ = [
    "CLIError",
    "CLIRenderer",
    "build_parser",
    "create_renderer",
    "run_cli",
]
