"""UI package exports for the CLI and plain-text rendering."""

from conveyor.ui.cli import CLIError, build_parser, run_cli

__all__ = ["CLIError", "build_parser", "run_cli"]
